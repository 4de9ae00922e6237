"""
Tests for reply grounding and mentioned-item scoring.
"""
import random

from conftest import make_item
from grounding import (
    UNAVAILABLE_PLACEHOLDER,
    embedded_images,
    ground_reply,
    mention_score,
    mentioned_items,
    referenced_ids,
)


def test_foreign_markdown_link_is_replaced(items):
    text = "Xem [Áo Thun Basic Trắng](/product/tee1) hoặc [Áo Fake](/product/zzz999) nhé"
    grounded = ground_reply(text, None, items)

    assert "[Áo Thun Basic Trắng](/product/tee1)" in grounded.text
    assert "zzz999" not in grounded.text
    assert UNAVAILABLE_PLACEHOLDER in grounded.text
    assert grounded.violations == 1


def test_foreign_bare_and_absolute_links_are_replaced(items):
    text = "Link: /product/nope1 và https://shop.example/product/nope2, còn /product/jog1 thì có"
    grounded = ground_reply(text, None, items)

    assert referenced_ids(grounded.text) == ["jog1"]
    assert grounded.text.count(UNAVAILABLE_PLACEHOLDER) == 2


def test_media_must_belong_to_an_allowed_item(items):
    assert ground_reply("", "https://img.example/tee1.jpg", items).media_url == "https://img.example/tee1.jpg"

    grounded = ground_reply("", "https://evil.example/x.jpg", items)
    assert grounded.media_url is None
    assert grounded.violations == 1


def test_embedded_images_must_belong_to_an_allowed_item(items):
    text = "Xem nè ![ảnh](https://evil.example/fake-item.jpg) và ![ảnh](https://img.example/jog1.jpg)"
    grounded = ground_reply(text, None, items)

    assert "evil.example" not in grounded.text
    assert embedded_images(grounded.text) == ["https://img.example/jog1.jpg"]
    assert grounded.violations == 1


def test_empty_allowed_set_rejects_every_reference():
    grounded = ground_reply("[A](/product/a1) /product/b2", "https://img.example/a1.jpg", [])
    assert referenced_ids(grounded.text) == []
    assert grounded.media_url is None


def test_no_foreign_id_survives_random_replies():
    rng = random.Random(2024)
    catalog_ids = [f"id{i}" for i in range(40)]

    for _ in range(200):
        allowed = [make_item(i, f"Item {i}", "T-shirt") for i in rng.sample(catalog_ids, 5)]
        allowed_ids = {i.id for i in allowed}
        parts = []
        for ref in rng.sample(catalog_ids, 6):
            style = rng.choice(["md", "bare", "abs", "img"])
            if style == "md":
                parts.append(f"[Tên {ref}](/product/{ref})")
            elif style == "bare":
                parts.append(f"/product/{ref}")
            elif style == "abs":
                parts.append(f"https://shop.example/product/{ref}")
            else:
                parts.append(f"![{ref}](https://img.example/{ref}.jpg)")
        media = f"https://img.example/{rng.choice(catalog_ids)}.jpg"

        grounded = ground_reply(" , ".join(parts), media, allowed)

        assert set(referenced_ids(grounded.text)) <= allowed_ids
        assert set(embedded_images(grounded.text)) <= {img for i in allowed for img in i.images}
        if grounded.media_url is not None:
            assert grounded.media_url in {img for i in allowed for img in i.images}


def test_mention_score_prefers_links_and_full_names(items):
    tee = items[0]
    assert mention_score(f"mua {tee.link} nhé", tee) == 2.0
    assert mention_score("Áo thun basic trắng rất đẹp", tee) == 1.5
    assert 0 < mention_score("mẫu basic này", tee) < 1
    assert mention_score("không liên quan", tee) == 0


def test_mentioned_items_picks_best_match(items):
    reply = "Mẫu Jogger Nỉ Xám đang bán chạy, bạn thử nhé"
    assert [i.id for i in mentioned_items(reply, items)] == ["jog2"]


def test_mentioned_items_falls_back_to_first(items):
    assert [i.id for i in mentioned_items("Chúc bạn một ngày vui!", items)] == ["tee1"]
    assert mentioned_items("anything", []) == []


def test_mentioned_items_pair_for_outfits(items):
    reply = "Bạn phối Hoodie Nỉ Bông Kem với Quần Jogger Kaki Đen là chuẩn"
    assert [i.id for i in mentioned_items(reply, items, pair=True)] == ["hood1", "jog1"]
