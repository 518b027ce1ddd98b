from recipeflow.standards import store
from recipeflow.standards.render import StandardRegistry, render_standard
from recipeflow.standards.schemas import CompanyStandard, StandardCreate, StandardType


def _standard(standard_type, name, content, id="std-x"):
    return CompanyStandard(id=id, user_id="u", standard_type=standard_type, name=name, content=content)


def test_render_platform_standard():
    standard = _standard(
        StandardType.PLATFORM,
        "Amazon rules",
        '{"platform": "Amazon", "requirements": ["No prices"], "characterLimits": {"title": 200}}',
    )
    assert render_standard(standard) == (
        "Platform: Amazon\nRequirements:\n- No prices\nCharacter Limits:\n- title: 200"
    )


def test_render_image_standard():
    standard = _standard(
        StandardType.IMAGE,
        "Photo style",
        '{"style": "Minimal", "dimensions": "2000x2000", "guidelines": ["White background"]}',
    )
    assert render_standard(standard) == (
        "Style: Minimal\nDimensions: 2000x2000\nGuidelines:\n- White background"
    )


def test_free_text_content_is_verbatim():
    standard = _standard(StandardType.VOICE, "Voice", "Be friendly and brief.")
    assert render_standard(standard) == "Be friendly and brief."


def test_match_and_select_prefers_keyword():
    registry = StandardRegistry()
    generic = _standard(StandardType.PLATFORM, "Generic marketplace", '{"platform": "Etsy"}', id="a")
    amazon = _standard(StandardType.PLATFORM, "Amazon listing rules", '{"platform": "Amazon"}', id="b")

    assert registry.match("amazon_requirements").name == "amazon_requirements"
    assert registry.match("AmazonRequirements").name == "amazon_requirements"
    assert registry.match("product_name") is None
    assert registry.select(registry.match("amazon_requirements"), [generic, amazon]) is amazon
    # No keyword hit falls back to the first standard of the type
    assert registry.select(registry.match("platform_requirements"), [generic, amazon]) is generic


def test_render_for_without_standard_is_empty():
    assert StandardRegistry().render_for("image_style_guidelines", []) == ""


def test_store_crud(database):
    created = store.create_standard(
        "u1",
        StandardCreate(standard_type="voice", name="Brand voice", content={"tone": "Warm"}),
    )
    assert created.id.startswith("std-")
    assert '"tone"' in created.content

    store.create_standard("u1", StandardCreate(standard_type="image", name="Images", content="plain"))
    store.create_standard("u2", StandardCreate(standard_type="voice", name="Other", content="x"))

    assert [s.name for s in store.list_standards("u1")] == ["Brand voice", "Images"]
    assert [s.name for s in store.list_standards("u1", StandardType.IMAGE)] == ["Images"]

    updated = store.update_standard(
        created.id, StandardCreate(standard_type="voice", name="Renamed", content="text")
    )
    assert updated.name == "Renamed"
    assert store.delete_standard(created.id) is True
    assert store.get_standard(created.id) is None
