"""Execution-side schemas: run and step state, outputs, API bodies.

These are distinct from the recipe schemas (which describe what to run).
Execution schemas describe what happens during and after a run.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from recipeflow.recipes.schemas import RecipeStep


class ExecutionStatus(str, Enum):
    """Execution lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
)
CANCELLABLE_STATUSES = (
    ExecutionStatus.PENDING,
    ExecutionStatus.RUNNING,
    ExecutionStatus.PAUSED,
)


class StepStatus(str, Enum):
    """Step execution states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    AWAITING_REVIEW = "awaiting_review"


LIVE_STEP_STATUSES = (StepStatus.PENDING, StepStatus.RUNNING, StepStatus.AWAITING_REVIEW)


class GeneratedImage(BaseModel):
    base64: str
    media_type: str = "image/png"


class StepOutput(BaseModel):
    """What a successful (or partially successful) step produced."""

    model_config = ConfigDict(protected_namespaces=())

    content: str = ""
    model: Optional[str] = None
    usage: dict[str, Any] = Field(default_factory=dict)
    generated_images: list[GeneratedImage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StepExecution(BaseModel):
    """The record of one step's attempt(s) within an execution."""

    model_config = ConfigDict(protected_namespaces=())

    id: str
    execution_id: str
    step_id: Optional[str] = None
    step_order: int
    status: StepStatus = StepStatus.PENDING
    input_data: dict[str, Any] = Field(
        default_factory=dict,
        description="Variables used to compile this step (images elided)",
    )
    output: Optional[StepOutput] = None
    error_message: Optional[str] = None
    approved: bool = False
    prompt_used: Optional[str] = None
    model_used: Optional[str] = None
    attempts: int = 0
    executed_at: Optional[str] = None


class Execution(BaseModel):
    """One run of a recipe (or of a caller-supplied step list)."""

    id: str
    recipe_id: str
    user_id: str
    status: ExecutionStatus = ExecutionStatus.PENDING
    current_step: int = 1
    input_data: dict[str, Any] = Field(default_factory=dict)
    steps: list[RecipeStep] = Field(
        default_factory=list,
        description="Snapshot of the effective step list taken at start",
    )
    steps_overridden: bool = False
    error: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    step_executions: list[StepExecution] = Field(default_factory=list)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def step_at(self, step_order: int) -> Optional[RecipeStep]:
        for step in self.steps:
            if step.step_order == step_order:
                return step
        return None

    def step_execution_at(self, step_order: int) -> Optional[StepExecution]:
        for se in self.step_executions:
            if se.step_order == step_order:
                return se
        return None

    def find_step_execution(self, step_execution_id: str) -> Optional[StepExecution]:
        for se in self.step_executions:
            if se.id == step_execution_id:
                return se
        return None

    def completed_outputs(self) -> dict[int, str]:
        """step_order -> content for every completed step."""
        return {
            se.step_order: se.output.content
            for se in self.step_executions
            if se.status == StepStatus.COMPLETED and se.output is not None
        }


class StepOutcome(BaseModel):
    """Classified result of running one step, as persisted."""

    model_config = ConfigDict(protected_namespaces=())

    status: StepStatus
    output: Optional[StepOutput] = None
    error_message: Optional[str] = None
    prompt_used: Optional[str] = None
    model_used: Optional[str] = None
    input_data: dict[str, Any] = Field(default_factory=dict)
    approved: bool = False
    applied: bool = Field(
        default=True,
        description="False when the write was discarded (execution already terminal)",
    )


# --- API request / response bodies ---


class StartExecutionRequest(BaseModel):
    recipe_id: str
    input_data: dict[str, Any] = Field(default_factory=dict)
    steps: Optional[list[RecipeStep]] = Field(
        default=None,
        description="Per-run override of the recipe's steps (replaces, never merges)",
    )


class RetryStepRequest(BaseModel):
    modified_prompt: Optional[str] = None
    modified_input: Optional[dict[str, Any]] = None


class EnrichedStepExecution(StepExecution):
    step_name: str = ""
    step_type: str = ""
    ai_model: Optional[str] = None
    output_format: str = "text"
    parsed_output: Any = None


class ExecutionDetail(BaseModel):
    """Full execution view returned by GET /executions/{id}."""

    id: str
    recipe_id: str
    recipe_name: Optional[str] = None
    user_id: str
    status: ExecutionStatus
    current_step: int
    total_steps: int
    input_data: dict[str, Any] = Field(default_factory=dict)
    steps_overridden: bool = False
    error: Optional[str] = None
    created_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    steps: list[RecipeStep] = Field(default_factory=list)
    step_executions: list[EnrichedStepExecution] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    id: str
    recipe_id: str
    recipe_name: Optional[str] = None
    status: ExecutionStatus
    current_step: int
    total_steps: int
    error: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


class ExecutionStatusResponse(BaseModel):
    """Lightweight status poll."""

    id: str
    status: ExecutionStatus
    current_step: int
    total_steps: int
    error: Optional[str] = None
    awaiting_review: list[str] = Field(
        default_factory=list,
        description="Ids of step executions waiting for approve/reject",
    )
    step_statuses: dict[str, StepStatus] = Field(
        default_factory=dict,
        description="Step order (as string) -> status",
    )


# --- Outputs gallery ---


class OutputItem(BaseModel):
    """A completed or reviewable step output, as listed in the outputs gallery."""

    model_config = ConfigDict(protected_namespaces=())

    id: str = Field(description="Step execution id")
    execution_id: str
    recipe_id: str
    recipe_name: Optional[str] = None
    user_id: str
    step_order: int
    step_name: str = ""
    output_format: str = "text"
    status: StepStatus
    model_used: Optional[str] = None
    executed_at: Optional[str] = None
    content: str = ""
    parsed_output: Any = None
    generated_images: list[GeneratedImage] = Field(default_factory=list)


class OutputGallery(BaseModel):
    """The caller's outputs, newest first, plus the same items by kind.

    An output with generated images is filed under images only.
    """

    all: list[OutputItem] = Field(default_factory=list)
    text: list[OutputItem] = Field(default_factory=list)
    markdown: list[OutputItem] = Field(default_factory=list)
    json_outputs: list[OutputItem] = Field(default_factory=list, serialization_alias="json")
    images: list[OutputItem] = Field(default_factory=list)

    @classmethod
    def from_items(cls, items: list[OutputItem]) -> "OutputGallery":
        gallery = cls(all=items)
        for item in items:
            if item.generated_images:
                gallery.images.append(item)
            elif item.output_format == "text":
                gallery.text.append(item)
            elif item.output_format == "markdown":
                gallery.markdown.append(item)
            elif item.output_format == "json":
                gallery.json_outputs.append(item)
        return gallery
