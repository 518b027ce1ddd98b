"""Schemas for the workflow assistant: conversations in, recipe drafts out."""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from recipeflow.recipes.schemas import InputType, OutputFormat


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class GeneratedInput(BaseModel):
    """A user input the drafted workflow asks for at run time."""

    name: str = Field(min_length=1)
    type: InputType = InputType.TEXT
    description: str = ""

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type_is_text(cls, value: Any) -> Any:
        try:
            return InputType(value)
        except ValueError:
            return InputType.TEXT


class GeneratedStep(BaseModel):
    step_name: str = ""
    step_type: str = "ai"
    ai_model: Optional[str] = None
    prompt_template: str = ""
    output_format: OutputFormat = OutputFormat.TEXT
    executor_config: dict[str, Any] = Field(default_factory=dict)

    @field_validator("executor_config", mode="before")
    @classmethod
    def _none_is_empty(cls, value: Any) -> Any:
        return value if value is not None else {}

    @field_validator("ai_model", mode="before")
    @classmethod
    def _blank_model_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class GeneratedWorkflow(BaseModel):
    """A recipe draft as the model proposes it (camelCase requiredInputs accepted)."""

    name: str = Field(min_length=1)
    description: str = ""
    steps: list[GeneratedStep] = Field(min_length=1)
    required_inputs: list[GeneratedInput] = Field(default_factory=list, alias="requiredInputs")

    model_config = ConfigDict(populate_by_name=True)


class AssistantRequest(BaseModel):
    messages: list[ConversationMessage] = Field(default_factory=list)


class AssistantResponse(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    message: str
    workflow: Optional[GeneratedWorkflow] = None
    suggestions: list[str] = Field(default_factory=list)
    model_used: Optional[str] = None


class SaveWorkflowRequest(BaseModel):
    workflow: GeneratedWorkflow
