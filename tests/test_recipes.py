import pytest
import yaml
from pydantic import ValidationError

from recipeflow.recipes import store
from recipeflow.recipes.schemas import InputType, RecipeCreate, RecipeStep
from recipeflow.recipes.templates import TEMPLATE_OWNER, TemplateRegistry


def test_step_accepts_json_string_blobs():
    step = RecipeStep(
        step_order=1,
        generation_config='{"temperature": 0.2, "maxTokens": 500}',
        api_config="",
        executor_config='{"transform_type": "filter"}',
    )

    assert step.generation_config.temperature == 0.2
    assert step.generation_config.max_tokens == 500
    assert step.api_config.service == "brightdata"
    assert step.executor_config == {"transform_type": "filter"}


def test_step_rejects_malformed_blobs():
    with pytest.raises(ValidationError, match="not valid JSON"):
        RecipeStep(step_order=1, executor_config="{broken")
    with pytest.raises(ValidationError, match="JSON object"):
        RecipeStep(step_order=1, executor_config="[1, 2]")


def test_model_config_key_is_generation_config():
    step = RecipeStep.model_validate({"step_order": 1, "model_config": {"numberOfImages": 2}})
    assert step.generation_config.number_of_images == 2


def test_input_config_variables_mapping():
    step = RecipeStep(
        step_order=1,
        input_config={
            "variables": {
                "product_images": {"type": "image", "maxImageSize": 5, "unknown": "dropped"},
                "notes": {"type": "textarea", "optional": True},
            }
        },
    )

    images, notes = step.input_config
    assert images.name == "product_images"
    assert images.type == InputType.IMAGE
    assert images.max_size_mb == 5
    assert notes.required is False
    assert step.input_spec("notes") is notes
    assert step.input_spec("other") is None


def test_blank_model_and_duplicate_orders():
    assert RecipeStep(step_order=1, ai_model="  ").ai_model is None
    with pytest.raises(ValidationError, match="Duplicate step_order"):
        RecipeCreate(name="r", steps=[RecipeStep(step_order=1), RecipeStep(step_order=1)])


def test_recipe_steps_sorted_by_order():
    recipe = RecipeCreate(name="r", steps=[RecipeStep(step_order=3), RecipeStep(step_order=1)])
    assert [s.step_order for s in recipe.steps] == [1, 3]


def test_store_round_trip_and_listing(database):
    created = store.create_recipe(
        RecipeCreate(
            name="Listing",
            steps=[
                RecipeStep(step_order=1, step_name="Research", prompt_template="About {{product}}"),
                RecipeStep(step_order=2, step_type="transform", executor_config={"transform_type": "csv_to_json"}),
            ],
        ),
        "u1",
    )
    store.create_recipe(RecipeCreate(name="Template", is_template=True), TEMPLATE_OWNER)
    store.create_recipe(RecipeCreate(name="Someone else's"), "u2")

    loaded = store.get_recipe(created.id)
    assert loaded.created_by == "u1"
    assert [s.step_name for s in loaded.steps] == ["Research", ""]
    assert all(s.id for s in loaded.steps)
    assert loaded.steps[1].executor_config == {"transform_type": "csv_to_json"}

    names = {r.name: r.step_count for r in store.list_recipes("u1")}
    assert names == {"Listing": 2, "Template": 0}
    assert store.get_recipe_names([created.id, "missing"]) == {created.id: "Listing"}


def test_store_update_replaces_steps_and_delete(database):
    created = store.create_recipe(
        RecipeCreate(name="r", steps=[RecipeStep(step_order=1), RecipeStep(step_order=2)]),
        "u1",
    )

    updated = store.update_recipe(
        created.id, RecipeCreate(name="renamed", steps=[RecipeStep(step_order=1, prompt_template="x")])
    )

    assert updated.name == "renamed"
    assert [s.prompt_template for s in updated.steps] == ["x"]
    assert store.update_recipe("missing", RecipeCreate(name="x")) is None
    assert store.delete_recipe(created.id) is True
    assert store.get_recipe(created.id) is None
    assert store.delete_recipe(created.id) is False


def test_bundled_templates_load():
    registry = TemplateRegistry()
    keys = {t.key for t in registry.list_all()}

    assert {"product_listing", "review_analyzer", "image_style_analyzer"} <= keys
    for template in registry.list_all():
        assert template.steps, template.key


def test_template_seed_is_idempotent(database, tmp_path):
    definitions = tmp_path / "definitions"
    definitions.mkdir()
    (definitions / "hello.yaml").write_text(yaml.safe_dump({
        "key": "hello",
        "name": "Hello",
        "steps": [{"step_order": 1, "prompt_template": "Hi {{name}}"}],
    }))
    (definitions / "broken.yaml").write_text("key: [unclosed")
    registry = TemplateRegistry(definitions)

    assert registry.seed() == 1
    assert registry.seed() == 1

    recipe = store.get_recipe("tpl-hello")
    assert recipe.is_template is True
    assert recipe.created_by == TEMPLATE_OWNER
    assert len(recipe.steps) == 1
    assert registry.get("broken") is None
