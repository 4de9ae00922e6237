# backend/agent.py
# Automated responder for the storefront support chat. Replies are grounded in a
# live catalog lookup and generated with OpenAI; short follow-ups ("có", "show me
# the pants") are answered from the conversation context without a new lookup.

import time
from typing import List, Optional, Protocol, Tuple

import openai
from openai import AsyncOpenAI

import config
from catalog import CatalogLookup, is_bottom_type
from conversation_context import ConversationContextStore
from grounding import ground_reply, mentioned_items
from intent import Garment, Intent, IntentKind, classify, garment_of, offers_media
from models import AutomatedReply, CatalogItem, ConversationContext, LastAction, ReplyPath
from observability import (
    record_automated_reply,
    record_generation,
    record_grounding_violations,
    record_llm_tokens,
    trace_operation,
)

GREETING_REPLY = (
    f"Xin chào! 👋 {config.STORE_NAME} rất vui được hỗ trợ bạn! Bạn muốn tìm sản phẩm gì ạ? 😊"
)
APOLOGY_REPLY = "Xin lỗi, mình đang gặp sự cố nhỏ! 😅 Thử hỏi lại hoặc liên hệ admin nhé! 🛠️"
NO_ITEMS_LINE = "Không có sản phẩm cụ thể."

SYSTEM_PROMPT = (
    f"Bạn là tư vấn viên của {config.STORE_NAME}, một cửa hàng thời trang. "
    "Bạn chỉ giới thiệu những sản phẩm có trong danh sách được cung cấp."
)

PROMPT_RULES = """**QUY TẮC**:
- Trả lời ngắn gọn (100-150 từ), thân thiện, xưng hô với khách là "bạn"
- Nếu khách hỏi size: sản phẩm có đủ size S, M, L, XL
- Chính sách đổi trả: "{store} hỗ trợ đổi trả trong vòng 7 ngày nếu sản phẩm còn nguyên tem mác."
- Thời gian giao hàng: "Thời gian giao hàng dự kiến từ 3-5 ngày làm việc."
- CHỈ giới thiệu sản phẩm CÓ TRONG DANH SÁCH, không tự tạo tên hay ID
- Chèn link bằng Markdown đúng dạng [Tên sản phẩm](/product/ID), giữ nguyên ID
- Nếu không có sản phẩm phù hợp, nói "Hiện tại chưa có sản phẩm phù hợp"
"""


class TransientResponderError(Exception):
    """Reply generation failed for a reason that may clear up by itself (rate limit, outage)."""


class ReplyGenerator(Protocol):
    async def generate(self, prompt: str) -> str:
        ...


class OpenAIReplyGenerator:
    """
    Reply generation through the OpenAI chat completions API.

    No retries: the client is built with max_retries=0 and any failure ends
    the turn. Rate limits, connection problems, timeouts and 5xx responses
    are raised as TransientResponderError.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = config.OPENAI_MODEL,
        timeout: float = config.OPENAI_TIMEOUT_SECONDS,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.api_key = api_key or config.OPENAI_API_KEY
        self.model = model
        self.timeout = timeout
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, max_retries=0, timeout=self.timeout)
        return self._client

    async def generate(self, prompt: str) -> str:
        start_time = time.time()
        status = "success"
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=0.7,
                max_tokens=400,
            )
        except (openai.RateLimitError, openai.APIConnectionError, openai.InternalServerError) as e:
            status = "transient_error"
            raise TransientResponderError(str(e)) from e
        except Exception:
            status = "error"
            raise
        finally:
            record_generation((time.time() - start_time) * 1000, self.model, status)

        if response.usage:
            record_llm_tokens(
                response.usage.prompt_tokens, response.usage.completion_tokens, self.model
            )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


def format_price(price: float) -> str:
    return f"{round(price / 1000)}k"


def build_prompt(message: str, items: List[CatalogItem], outfit: bool = False) -> str:
    """Prompt listing exactly the items the reply is allowed to mention."""
    if items:
        listing = "\n".join(
            f"{i}. [{item.name}]({item.link}) – Giá: {format_price(item.price)}"
            for i, item in enumerate(items, start=1)
        )
    else:
        listing = NO_ITEMS_LINE

    prompt = (
        f'**KHÁCH YÊU CẦU**: "{message}"\n'
        f"**SẢN PHẨM CÓ SẴN TRONG KHO**:\n{listing}\n"
        f"{PROMPT_RULES.format(store=config.STORE_NAME)}"
    )
    if outfit:
        prompt += "\n🎯 Tư vấn SET từ danh sách: 1 áo + 1 quần có sẵn.\n"
    return prompt + "\nTrả lời (chỉ dùng sản phẩm có trong danh sách):"


def _garment_of_item(item: CatalogItem) -> Garment:
    return Garment.BOTTOM if is_bottom_type(item.product_type) else Garment.TOP


def resolve_confirmed_item(intent: Intent, context: ConversationContext) -> Optional[CatalogItem]:
    """
    Which remembered item a confirmation refers to.

    A product type or garment named in the message must match a remembered
    item, otherwise the message is about something new and None is returned.
    Without such a hint the garment of the original query breaks ties.
    """
    items = list(context.last_items)
    if not items:
        return None

    if intent.product_terms:
        items = [
            item for item in items
            if any(t in item.name.lower() or t in item.product_type.lower() for t in intent.product_terms)
        ]
        if not items:
            return None

    if intent.garment is not None:
        matching = [item for item in items if _garment_of_item(item) is intent.garment]
        return matching[0] if matching else None

    if len(items) > 1 and context.last_query:
        preferred = garment_of(context.last_query)
        if preferred is not None:
            for item in items:
                if _garment_of_item(item) is preferred:
                    return item

    return items[0]


class AutomatedResponder:
    """
    Turns a customer message plus the conversation context into a reply.

    Order of evaluation: greeting, confirmation of a just-offered item, then
    catalog lookup + generation. Every reply is grounded before it is
    returned.
    """

    def __init__(
        self,
        lookup: CatalogLookup,
        generator: ReplyGenerator,
        contexts: ConversationContextStore,
        confirmation_window_seconds: float = config.CONFIRMATION_WINDOW_SECONDS,
        provider: str = config.PROVIDER_TAG,
    ):
        self.lookup = lookup
        self.generator = generator
        self.contexts = contexts
        self.confirmation_window_seconds = confirmation_window_seconds
        self.provider = provider

    async def respond(self, message: str, conversation_id: str) -> AutomatedReply:
        """
        Produce a reply for one customer message.

        Raises TransientResponderError when generation hit a transient upstream
        failure; every other failure is turned into the apology reply.
        """
        intent = classify(message)
        context = self.contexts.get(conversation_id)
        remembered = list(context.last_items) if context else []

        with trace_operation(
            "automated_responder.respond",
            {"chat.conversation_id": conversation_id, "chat.intent": intent.kind.value},
        ):
            try:
                reply, allowed = await self._reply(message, intent, context)
            except TransientResponderError:
                raise
            except Exception as e:
                print(f"Automated responder failed for {conversation_id}: {e}")
                reply, allowed = AutomatedReply(text=APOLOGY_REPLY, path=ReplyPath.APOLOGY), []

        grounded = ground_reply(reply.text, reply.media_url, allowed + remembered)
        record_grounding_violations(grounded.violations)
        reply = reply.model_copy(update={"text": grounded.text, "media_url": grounded.media_url})

        if reply.path is ReplyPath.GENERATED:
            self._remember(conversation_id, message, intent, reply)
        elif reply.path is ReplyPath.CONFIRMATION:
            self.contexts.update(conversation_id, last_action=LastAction.MENTIONED_ITEM)

        record_automated_reply(reply.path.value)
        return reply

    async def _reply(
        self, message: str, intent: Intent, context: Optional[ConversationContext]
    ) -> Tuple[AutomatedReply, List[CatalogItem]]:
        if intent.kind is IntentKind.GREETING:
            return AutomatedReply(text=GREETING_REPLY, path=ReplyPath.GREETING), []

        confirmed = self.confirmation(intent, context)
        if confirmed is not None:
            return confirmed, []

        with trace_operation("automated_responder.catalog_lookup"):
            items = await self.lookup.search(message, intent)

        prompt = build_prompt(message, items, intent.outfit)
        with trace_operation("automated_responder.generate", {"llm.items": len(items)}):
            text = await self.generator.generate(prompt)
        if not text.strip():
            raise ValueError("generation returned an empty reply")

        return AutomatedReply(text=text.strip(), path=ReplyPath.GENERATED, items=items), items

    def confirmation(
        self, intent: Intent, context: Optional[ConversationContext]
    ) -> Optional[AutomatedReply]:
        """Reply showing a just-offered item, or None when the message is not such a confirmation."""
        if intent.kind is not IntentKind.IMAGE_CONFIRMATION or context is None:
            return None
        if context.last_action not in (LastAction.OFFERED_MEDIA, LastAction.MENTIONED_ITEM):
            return None
        if self.contexts.now() - context.refreshed_at > self.confirmation_window_seconds:
            return None

        item = resolve_confirmed_item(intent, context)
        if item is None:
            return None

        if item.image:
            text = f"Đây là ảnh của [{item.name}]({item.link}) nè bạn! 👇"
        else:
            text = f"Mẫu [{item.name}]({item.link}) hiện chưa có ảnh, bạn bấm vào link để xem chi tiết nhé!"
        return AutomatedReply(
            text=text, media_url=item.image, path=ReplyPath.CONFIRMATION, items=[item]
        )

    def _remember(self, conversation_id: str, message: str, intent: Intent, reply: AutomatedReply):
        if not reply.items:
            return
        mentioned = mentioned_items(reply.text, reply.items, pair=intent.outfit)
        self.contexts.set(
            conversation_id,
            ConversationContext(
                last_items=mentioned,
                last_action=LastAction.OFFERED_MEDIA if offers_media(reply.text) else LastAction.MENTIONED_ITEM,
                last_query=message,
                last_reply=reply.text,
                provider=self.provider,
            ),
        )
