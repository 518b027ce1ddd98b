"""Step executor contract.

Every step type (ai, scraping, script, http, transform) is served by one
executor. An executor:

- declares a config schema (drives the recipe editor, not needed to run)
- parses its typed config from step.executor_config once per run
- names the template fields the step runner must resolve before dispatch
- performs the external work and reports an ExecutorResult

Executors never read or write execution state; persistence belongs to the
step runner.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Type

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from recipeflow.errors import InvalidInput
from recipeflow.executor.schemas import GeneratedImage
from recipeflow.executor.variables import ImageInput
from recipeflow.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)


class ConfigFieldType(str, Enum):
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"
    CODE = "code"


class ConfigOption(BaseModel):
    value: str
    label: str


class ConfigField(BaseModel):
    """One configurable field, as shown in the recipe editor."""

    name: str
    label: str
    type: ConfigFieldType = ConfigFieldType.TEXT
    required: bool = False
    default: Any = None
    options: Optional[list[ConfigOption]] = None
    help_text: str = ""
    language: Optional[str] = Field(default=None, description="Syntax for code fields")


class ExecutorInfo(BaseModel):
    type: str
    display_name: str
    icon: str = ""
    description: str = ""
    requires_review: bool = False
    config_schema: list[ConfigField] = Field(default_factory=list)


class ExecutorResult(BaseModel):
    """What an executor reports back to the step runner."""

    model_config = ConfigDict(protected_namespaces=())

    success: bool
    content: str = ""
    generated_images: list[GeneratedImage] = Field(default_factory=list)
    usage: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    prompt_used: Optional[str] = None
    model_used: Optional[str] = None

    @classmethod
    def failure(cls, error: str, **kwargs) -> "ExecutorResult":
        return cls(success=False, error=error, **kwargs)


@dataclass
class CompiledInput:
    """A step's fully resolved input, handed to the executor."""

    fields: dict[str, str] = field(default_factory=dict)
    images: list[ImageInput] = field(default_factory=list)
    user_inputs: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[int, str] = field(default_factory=dict)
    variables: dict[str, str] = field(default_factory=dict)
    config: Optional[BaseModel] = None
    cancellation_check: Callable[[], bool] = lambda: False

    @property
    def prompt(self) -> str:
        return self.fields.get("prompt", "")

    def last_output(self) -> Optional[str]:
        """Output of the latest completed step, if any."""
        if not self.step_outputs:
            return None
        return self.step_outputs[max(self.step_outputs)]


class StepExecutor:
    """Base class for step executors."""

    type: str = ""
    display_name: str = ""
    icon: str = ""
    description: str = ""
    # Whether a successful result waits for human approval unless the step
    # sets auto_approve.
    requires_review: bool = False
    config_model: Optional[Type[BaseModel]] = None

    def config_schema(self) -> list[ConfigField]:
        return []

    def parse_config(self, step: RecipeStep) -> Optional[BaseModel]:
        """Parse the step's executor_config into this executor's typed config.

        Raises:
            InvalidInput: the config does not validate
        """
        if self.config_model is None:
            return None
        try:
            return self.config_model.model_validate(step.executor_config or {})
        except PydanticValidationError as e:
            errors = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
                for err in e.errors()
            )
            raise InvalidInput(f"Step {step.step_order} ({self.type}) config invalid: {errors}")

    def validate_config(self, step: RecipeStep) -> list[str]:
        """Return human-readable problems with the step's configuration."""
        try:
            config = self.parse_config(step)
        except InvalidInput as e:
            return [str(e)]
        return self.check(step, config)

    def check(self, step: RecipeStep, config: Optional[BaseModel]) -> list[str]:
        """Type-specific checks beyond schema validation."""
        return []

    def template_fields(self, step: RecipeStep, config: Optional[BaseModel]) -> dict[str, str]:
        """Templates the step runner resolves before calling execute()."""
        return {"prompt": step.prompt_template} if step.prompt_template else {}

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        raise NotImplementedError

    def info(self) -> ExecutorInfo:
        return ExecutorInfo(
            type=self.type,
            display_name=self.display_name,
            icon=self.icon,
            description=self.description,
            requires_review=self.requires_review,
            config_schema=self.config_schema(),
        )
