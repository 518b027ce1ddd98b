"""AI step executor: text, vision and image generation through the LLM layer."""

import logging
from typing import Callable, Optional

from pydantic import BaseModel

from recipeflow.errors import ExecutorError
from recipeflow.executor.schemas import GeneratedImage
from recipeflow.executors.base import (
    CompiledInput,
    ConfigField,
    ConfigFieldType,
    ConfigOption,
    ExecutorResult,
    StepExecutor,
)
from recipeflow.llm.backends import ImagePart
from recipeflow.llm.factory import get_backend, provider_for
from recipeflow.llm.models import ModelCatalog, get_model_catalog
from recipeflow.llm.runner import run_llm_call
from recipeflow.recipes.schemas import OutputFormat, RecipeStep

logger = logging.getLogger(__name__)


class AIExecutor(StepExecutor):
    type = "ai"
    display_name = "AI Model"
    icon = "🤖"
    description = "Send a compiled prompt to an LLM (OpenAI, Anthropic, Google) and capture the response"
    requires_review = True

    def __init__(
        self,
        backend_factory: Callable = get_backend,
        catalog: Optional[ModelCatalog] = None,
    ):
        self._backend_factory = backend_factory
        self._catalog = catalog

    @property
    def catalog(self) -> ModelCatalog:
        return self._catalog or get_model_catalog()

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="ai_model",
                label="AI Model",
                type=ConfigFieldType.SELECT,
                required=True,
                options=[ConfigOption(value=m.id, label=m.name) for m in self.catalog.list_all()],
            ),
            ConfigField(
                name="prompt_template",
                label="Prompt Template",
                type=ConfigFieldType.TEXTAREA,
                required=True,
                help_text="Use {{variable}} for inputs, {{step_N_output}} for earlier steps",
            ),
            ConfigField(
                name="output_format",
                label="Output Format",
                type=ConfigFieldType.SELECT,
                default="text",
                options=[ConfigOption(value=f.value, label=f.value.title()) for f in OutputFormat],
            ),
            ConfigField(name="temperature", label="Temperature", type=ConfigFieldType.NUMBER, default=0.7),
            ConfigField(name="max_tokens", label="Max Tokens", type=ConfigFieldType.NUMBER, default=4096),
        ]

    def check(self, step: RecipeStep, config: Optional[BaseModel]) -> list[str]:
        errors = []
        prefix = f"Step {step.step_order} (ai)"
        if not step.ai_model:
            errors.append(f"{prefix}: ai_model is required")
        else:
            try:
                provider_for(step.ai_model, self.catalog)
            except ValueError as e:
                errors.append(f"{prefix}: {e}")
            if (
                step.output_format == OutputFormat.IMAGE
                and not self.catalog.supports_image_generation(step.ai_model)
            ):
                errors.append(f"{prefix}: model '{step.ai_model}' cannot generate images")
        if not step.prompt_template.strip():
            errors.append(f"{prefix}: prompt_template is required")
        return errors

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        model_id = step.ai_model
        gen = step.generation_config
        try:
            backend = self._backend_factory(model_id)
        except ValueError as e:
            raise ExecutorError(str(e)) from e
        generate_images = self.catalog.supports_image_generation(model_id)

        images: list[ImagePart] = []
        if compiled.images:
            if self.catalog.supports_vision(model_id) or generate_images:
                images = [ImagePart(data=img.data, media_type=img.media_type) for img in compiled.images]
            else:
                logger.warning(
                    f"Model {model_id} has no vision support; dropping "
                    f"{len(compiled.images)} attached image(s)"
                )

        result, retries = run_llm_call(
            backend,
            compiled.prompt,
            generate_images=generate_images,
            max_tokens=gen.max_tokens,
            temperature=gen.temperature,
            top_p=gen.top_p,
            number_of_images=gen.number_of_images,
            aspect_ratio=gen.aspect_ratio,
            negative_prompt=gen.negative_prompt,
            images=images or None,
            cancellation_check=compiled.cancellation_check,
            label=f"step {step.step_order} {step.step_name}".strip(),
        )

        return ExecutorResult(
            success=True,
            content=result.content,
            generated_images=[
                GeneratedImage(base64=img.data, media_type=img.media_type)
                for img in result.images
            ],
            usage={
                "input_tokens": result.input_tokens,
                "output_tokens": result.output_tokens,
            },
            metadata={
                "duration_ms": result.duration_ms,
                "retries": retries,
                "images_attached": len(images),
            },
            prompt_used=compiled.prompt,
            model_used=result.model_id,
        )
