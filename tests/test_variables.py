import pytest

from recipeflow.errors import InvalidInput, MissingRequiredInput, UnresolvedVariable
from recipeflow.executor.variables import (
    IMAGE_PLACEHOLDER,
    ResolutionContext,
    extract_variables,
    merged_input_specs,
    required_user_inputs,
    resolve,
    validate_user_inputs,
)
from recipeflow.recipes.schemas import InputSpec, InputType, RecipeStep
from recipeflow.standards.render import StandardRegistry
from recipeflow.standards.schemas import CompanyStandard, StandardType


def _ctx(**kwargs) -> ResolutionContext:
    kwargs.setdefault("registry", StandardRegistry())
    return ResolutionContext(**kwargs)


def _voice_standard(name="Brand voice") -> CompanyStandard:
    return CompanyStandard(
        id="std-1",
        user_id="u",
        standard_type=StandardType.VOICE,
        name=name,
        content='{"tone": "Warm", "style": "Concise", "guidelines": ["No jargon"]}',
    )


def test_extract_variables_unique_in_order():
    assert extract_variables("{{a}} {{ b }} {{a}} {{step_1_output}}") == ["a", "b", "step_1_output"]


def test_resolve_substitutes_all_sources():
    ctx = _ctx(
        user_inputs={"product_name": "Lamp"},
        step_outputs={1: "Hello"},
        standards=[_voice_standard()],
    )
    result = resolve("{{product_name}} | {{step_1_output}} | {{brand_voice}}", ctx)
    assert result.text.startswith("Lamp | Hello | Tone: Warm")
    assert "{{" not in result.text
    assert result.variables["product_name"] == "Lamp"
    assert "step_1_output" not in result.variables


def test_resolve_is_idempotent():
    ctx = _ctx(user_inputs={"x": {"b": 1, "a": 2}}, step_outputs={1: "out"})
    template = "{{x}} then {{step_1_output}}"
    assert resolve(template, ctx).text == resolve(template, ctx).text


def test_future_step_output_is_unresolved_never_empty():
    with pytest.raises(UnresolvedVariable) as exc:
        resolve("Use {{step_2_output}}", _ctx(step_outputs={1: "only step one"}))
    assert "step_2_output" in str(exc.value)


def test_step_output_checked_before_user_inputs():
    with pytest.raises(UnresolvedVariable):
        resolve("{{missing}} {{step_3_output}}", _ctx())


def test_missing_required_input_fails_whole_template():
    with pytest.raises(MissingRequiredInput) as exc:
        resolve("{{a}} and {{b}}", _ctx(user_inputs={"a": "present"}))
    assert exc.value.names == ["b"]


def test_optional_input_uses_default():
    spec = InputSpec(name="tone", required=False, default="neutral")
    result = resolve("Tone: {{tone}}", _ctx(input_specs={"tone": spec}))
    assert result.text == "Tone: neutral"


def test_standard_without_user_standard_resolves_empty():
    result = resolve("[{{amazon_requirements}}]", _ctx())
    assert result.text == "[]"


def test_fuzzy_standard_name_match():
    result = resolve("{{ourBrandVoice}}", _ctx(standards=[_voice_standard()]))
    assert "Tone: Warm" in result.text


def test_image_input_becomes_placeholder_and_out_of_band_payload():
    spec = InputSpec(name="photo", type=InputType.IMAGE)
    data = "data:image/png;base64,iVBORw0KGgo="
    result = resolve("Look at {{photo}}", _ctx(user_inputs={"photo": data}, input_specs={"photo": spec}))
    assert result.text == "Look at " + IMAGE_PLACEHOLDER.format(name="photo")
    assert len(result.images) == 1
    assert result.images[0].media_type == "image/png"
    assert result.images[0].data == data


def test_url_list_joined_with_newlines():
    spec = InputSpec(name="urls", type=InputType.URL_LIST)
    result = resolve(
        "{{urls}}",
        _ctx(user_inputs={"urls": "https://a.example, https://b.example\n\n"}, input_specs={"urls": spec}),
    )
    assert result.text == "https://a.example\nhttps://b.example"


def test_file_input_substitutes_content():
    spec = InputSpec(name="notes", type=InputType.FILE)
    result = resolve(
        "{{notes}}",
        _ctx(user_inputs={"notes": {"name": "n.txt", "content": "file body"}}, input_specs={"notes": spec}),
    )
    assert result.text == "file body"


def test_required_user_inputs_skips_outputs_and_standards():
    steps = [
        RecipeStep(step_order=1, prompt_template="{{product_name}} {{brand_voice}}"),
        RecipeStep(
            step_order=2,
            prompt_template="{{step_1_output}} {{extra}}",
            input_config=[{"name": "extra", "required": False}],
        ),
    ]
    specs = merged_input_specs(steps)
    required = required_user_inputs([s.prompt_template for s in steps], specs, StandardRegistry())
    assert required == ["product_name"]


def test_validate_user_inputs_limits():
    specs = {"urls": InputSpec(name="urls", type=InputType.URL_LIST, max_items=1)}
    with pytest.raises(InvalidInput):
        validate_user_inputs({"urls": "https://a.example\nhttps://b.example"}, [], specs)
    with pytest.raises(MissingRequiredInput):
        validate_user_inputs({"urls": "  "}, ["urls"], specs)
