"""
Tests for the automated responder and the OpenAI reply generator.
"""
from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import openai
import pytest

from agent import (
    APOLOGY_REPLY,
    GREETING_REPLY,
    NO_ITEMS_LINE,
    OpenAIReplyGenerator,
    TransientResponderError,
    build_prompt,
)
from grounding import UNAVAILABLE_PLACEHOLDER
from models import ConversationContext, LastAction, ReplyPath

CID = "user_1"
OFFER_TEXT = "Bạn tham khảo [Áo Thun Basic Trắng](/product/tee1) nhé! Bạn có muốn xem ảnh sản phẩm không?"


def _by_id(items, item_id):
    return next(i for i in items if i.id == item_id)


class TestGreeting:

    @pytest.mark.asyncio
    async def test_greeting_skips_lookup_and_generation(self, responder, catalog, generator):
        reply = await responder.respond("xin chào", CID)

        assert reply.text == GREETING_REPLY
        assert reply.path is ReplyPath.GREETING
        assert reply.media_url is None
        assert catalog.queries == []
        assert generator.prompts == []


class TestGeneratedReply:

    @pytest.mark.asyncio
    async def test_reply_is_grounded_in_lookup_results(self, responder, generator):
        reply = await responder.respond("áo thun", CID)

        assert reply.path is ReplyPath.GENERATED
        assert "[Áo Thun Basic Trắng](/product/tee1)" in reply.text
        assert [i.id for i in reply.items] == ["tee1", "tee2"]

        prompt = generator.prompts[0]
        assert "[Áo Thun Basic Trắng](/product/tee1)" in prompt
        assert "[Áo Thun Graphic Đen](/product/tee2)" in prompt
        assert "199k" in prompt
        assert "hood1" not in prompt

    @pytest.mark.asyncio
    async def test_foreign_link_is_replaced(self, responder, generator):
        generator.text = "Bạn xem thử [Áo Siêu Hot](/product/ghost42) nha"
        reply = await responder.respond("áo thun", CID)

        assert "ghost42" not in reply.text
        assert UNAVAILABLE_PLACEHOLDER in reply.text

    @pytest.mark.asyncio
    async def test_reply_writes_context(self, responder, contexts, clock):
        await responder.respond("áo thun", CID)

        context = contexts.get(CID)
        assert [i.id for i in context.last_items] == ["tee1"]
        assert context.last_action is LastAction.MENTIONED_ITEM
        assert context.last_query == "áo thun"
        assert context.provider == "openai"
        assert context.refreshed_at == clock.now

    @pytest.mark.asyncio
    async def test_media_offer_is_remembered(self, responder, contexts, generator):
        generator.text = OFFER_TEXT
        await responder.respond("áo thun", CID)
        assert contexts.get(CID).last_action is LastAction.OFFERED_MEDIA

    @pytest.mark.asyncio
    async def test_outfit_reply_remembers_top_and_bottom(self, responder, contexts, generator):
        generator.text = "Set này mặc đi chơi cuối tuần là chuẩn luôn nha"
        reply = await responder.respond("phối cho mình một bộ đi chơi", CID)

        assert len(reply.items) == 2
        assert "SET" in generator.prompts[0]
        remembered = contexts.get(CID).last_items
        assert [i.id for i in remembered] == [i.id for i in reply.items]
        assert remembered[1].product_type == "Jogger"

    @pytest.mark.asyncio
    async def test_empty_catalog_result_still_generates(self, responder, generator, catalog):
        catalog._items = []
        generator.text = "Hiện tại chưa có sản phẩm phù hợp"
        reply = await responder.respond("áo thun", CID)

        assert NO_ITEMS_LINE in generator.prompts[0]
        assert reply.text == "Hiện tại chưa có sản phẩm phù hợp"


class TestConfirmation:

    @pytest.mark.asyncio
    async def test_confirmation_within_window_shows_item(self, responder, catalog, generator, clock, contexts):
        generator.text = OFFER_TEXT
        await responder.respond("áo thun", CID)
        queries, prompts = len(catalog.queries), len(generator.prompts)

        clock.advance(60)
        reply = await responder.respond("có", CID)

        assert reply.path is ReplyPath.CONFIRMATION
        assert reply.media_url == "https://img.example/tee1.jpg"
        assert "[Áo Thun Basic Trắng](/product/tee1)" in reply.text
        assert len(catalog.queries) == queries
        assert len(generator.prompts) == prompts
        assert contexts.get(CID).last_action is LastAction.MENTIONED_ITEM

    @pytest.mark.asyncio
    async def test_confirmation_after_window_falls_through(self, responder, catalog, generator, clock):
        generator.text = OFFER_TEXT
        await responder.respond("áo thun", CID)

        clock.advance(6 * 60)
        reply = await responder.respond("có", CID)

        assert reply.path is ReplyPath.GENERATED
        assert reply.media_url is None
        assert len(generator.prompts) == 2

    @pytest.mark.asyncio
    async def test_garment_hint_picks_matching_item(self, responder, contexts, items):
        contexts.set(CID, ConversationContext(
            last_items=[_by_id(items, "hood1"), _by_id(items, "jog1")],
            last_action=LastAction.OFFERED_MEDIA,
            last_query="phối đồ đi chơi",
        ))

        reply = await responder.respond("show me the pants", CID)

        assert reply.path is ReplyPath.CONFIRMATION
        assert reply.media_url == "https://img.example/jog1.jpg"

    @pytest.mark.asyncio
    async def test_unmatched_product_term_is_a_new_question(self, responder, contexts, items, generator):
        contexts.set(CID, ConversationContext(
            last_items=[_by_id(items, "tee1")],
            last_action=LastAction.OFFERED_MEDIA,
            last_query="áo thun",
        ))
        generator.text = "Mẫu [Hoodie Nỉ Bông Kem](/product/hood1) đang bán chạy nè"

        reply = await responder.respond("cho xem hoodie", CID)

        assert reply.path is ReplyPath.GENERATED
        assert "[Hoodie Nỉ Bông Kem](/product/hood1)" in reply.text
        assert [i.id for i in contexts.get(CID).last_items] == ["hood1"]

    @pytest.mark.asyncio
    async def test_no_context_means_generation(self, responder, generator):
        reply = await responder.respond("có", CID)
        assert reply.path is ReplyPath.GENERATED
        assert len(generator.prompts) == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_transient_failure_propagates(self, responder, generator, contexts):
        generator.error = TransientResponderError("rate limited")
        with pytest.raises(TransientResponderError):
            await responder.respond("áo thun", CID)
        assert contexts.get(CID) is None

    @pytest.mark.asyncio
    async def test_other_failure_becomes_apology(self, responder, generator, contexts):
        generator.error = RuntimeError("boom")
        reply = await responder.respond("áo thun", CID)

        assert reply.text == APOLOGY_REPLY
        assert reply.path is ReplyPath.APOLOGY
        assert contexts.get(CID) is None

    @pytest.mark.asyncio
    async def test_blank_generation_becomes_apology(self, responder, generator):
        generator.text = "   "
        reply = await responder.respond("áo thun", CID)
        assert reply.path is ReplyPath.APOLOGY


def test_build_prompt_lists_items_and_outfit_hint(items):
    prompt = build_prompt("phối đồ", items[:2], outfit=True)
    assert '"phối đồ"' in prompt
    assert "1. [Áo Thun Basic Trắng](/product/tee1)" in prompt
    assert "2. [Áo Thun Graphic Đen](/product/tee2)" in prompt
    assert "SET" in prompt

    assert NO_ITEMS_LINE in build_prompt("abc", [])


def _client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class TestOpenAIReplyGenerator:

    @pytest.mark.asyncio
    async def test_returns_completion_text(self):
        response = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content="Chào bạn nha"))],
            usage=SimpleNamespace(prompt_tokens=12, completion_tokens=4),
        )
        create = AsyncMock(return_value=response)
        generator = OpenAIReplyGenerator(api_key="test", model="gpt-4o-mini", client=_client(create))

        assert await generator.generate("prompt") == "Chào bạn nha"
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["messages"][-1] == {"role": "user", "content": "prompt"}

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
        generator = OpenAIReplyGenerator(api_key="test", client=_client(create))

        with pytest.raises(TransientResponderError):
            await generator.generate("prompt")
        assert create.await_count == 1

    @pytest.mark.asyncio
    async def test_other_errors_propagate_unchanged(self):
        generator = OpenAIReplyGenerator(api_key="test", client=_client(AsyncMock(side_effect=ValueError("bad"))))
        with pytest.raises(ValueError):
            await generator.generate("prompt")

    @pytest.mark.asyncio
    async def test_generator_failure_through_responder(self, responder):
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        responder.generator = OpenAIReplyGenerator(
            api_key="test", client=_client(AsyncMock(side_effect=openai.APITimeoutError(request=request)))
        )
        with pytest.raises(TransientResponderError):
            await responder.respond("áo thun", CID)
