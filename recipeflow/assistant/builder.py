"""Workflow assistant: drafts a recipe from a plain-language description.

The model is shown the registered step types (with their executor_config
fields), the models that have credentials configured and the reserved
standard variables, and is asked to answer with a ```workflow-json block.
The block is extracted and validated into a GeneratedWorkflow; saving a
draft turns it into an ordinary recipe owned by the caller.
"""

import json
import logging
import os
import re
from typing import Callable, Optional

from jinja2 import BaseLoader, Environment
from pydantic import ValidationError as PydanticValidationError

from recipeflow.assistant.schemas import (
    AssistantResponse,
    ConversationMessage,
    GeneratedWorkflow,
)
from recipeflow.errors import ExecutorError
from recipeflow.executor.variables import extract_variables
from recipeflow.executors.registry import ExecutorRegistry, get_executor_registry
from recipeflow.llm.backends import ModelBackend
from recipeflow.llm.factory import get_backend
from recipeflow.llm.models import ModelCatalog, get_model_catalog
from recipeflow.llm.runner import run_llm_call
from recipeflow.recipes.schemas import InputSpec, RecipeCreate, RecipeStep
from recipeflow.standards.render import StandardRegistry, get_standard_registry

logger = logging.getLogger(__name__)

# First configured model wins; ASSISTANT_MODEL overrides when it is available
PREFERRED_MODELS = ("claude-opus-4-5", "gpt-4o", "gemini-2.5-pro", "gemini-2.5-flash")
ASSISTANT_MODEL = os.environ.get("ASSISTANT_MODEL", "")
ASSISTANT_MAX_TOKENS = int(os.environ.get("ASSISTANT_MAX_TOKENS", "16000"))

FORMAT_REMINDER = (
    "\n\n[If you propose a workflow, include the complete JSON in a "
    "```workflow-json fenced block. Do not leave it out.]"
)

STARTER_SUGGESTIONS = [
    "Analyze Amazon reviews for a product and suggest improvements",
    "Research competitors and write a comparison report",
    "Scrape reviews, clean the data, then draft marketing copy",
]

_FENCES = (
    re.compile(r"```workflow-json\s*(.*?)\s*```", re.DOTALL),
    re.compile(r"```json\s*(.*?)\s*```", re.DOTALL),
)
_RAW_WORKFLOW_RE = re.compile(r"\{.*\"name\"\s*:.*\"steps\"\s*:\s*\[.*\].*\}", re.DOTALL)
_SUGGESTIONS_RE = re.compile(
    r"(?:suggestions?|refinements?|ideas?)\s*:?[ \t]*\n"
    r"((?:[ \t]*(?:[-*]|\d+[.)])[ \t]+.+(?:\n|$))+)",
    re.IGNORECASE,
)
_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*]|\d+[.)])\s+")

_env = Environment(
    loader=BaseLoader(),
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)

SYSTEM_PROMPT_TEMPLATE = """\
You design multi-step content workflows ("recipes"). Turn the user's goal
into a concrete recipe, or ask a short clarifying question if the goal is
too vague to build. Answer in the language the user writes in.

## Step types

{% for executor in executors %}
- {{ executor.display_name }} (step_type "{{ executor.type }}"): {{ executor.description }}
{% if executor.config_schema %}
  executor_config fields:
{% for field in executor.config_schema %}
    - {{ field.name }} ({{ field.type.value }}{{ ", required" if field.required }}): {{ field.help_text or field.label }}
{% endfor %}
{% endif %}
{% endfor %}

Pick "ai" for writing, analysis, summaries and translation; "scraping" to
collect product reviews; "http" for external APIs; "script" for custom
processing; "transform" for CSV/JSON conversion, field mapping or filtering.
Non-ai steps need a complete executor_config.

## Models

{% for model in text_models %}
- {{ model.id }} ({{ model.name }}{{ ", vision" if model.supports_vision }})
{% endfor %}
{% if image_models %}
Image generation (use output_format "image"):
{% for model in image_models %}
- {{ model.id }} ({{ model.name }})
{% endfor %}
{% endif %}

## Variables

{% raw %}
- {{name}} asks the user for a value when the recipe runs
- {{step_N_output}} is the output of step N (1-based, earlier steps only)
{% endraw %}
- Filled from the user's company standards: {{ standard_variables | join(", ") }}

## Answer format

Explain the workflow in a few sentences, then give the JSON:

```workflow-json
{% raw %}
{
  "name": "Workflow name",
  "description": "One line",
  "steps": [
    {
      "step_name": "Step name",
      "step_type": "ai",
      "ai_model": "model-id",
      "prompt_template": "Instructions using {{variables}} and {{step_1_output}}",
      "output_format": "text",
      "executor_config": {}
    }
  ],
  "requiredInputs": [
    {"name": "variables", "type": "text", "description": "What the user supplies"}
  ]
}
{% endraw %}
```

Input types: text, textarea, url_list, image, file. Output formats: text,
markdown, json, image. Keep prompt templates focused. End with two or three
numbered suggestions for refining the workflow under a "Suggestions:" line.
"""


def select_model(catalog: Optional[ModelCatalog] = None) -> str:
    """Model the assistant talks to.

    Raises:
        ExecutorError: no text model has credentials configured
    """
    catalog = catalog or get_model_catalog()
    candidates = [m.id for m in catalog.available() if not m.supports_image_generation]
    if ASSISTANT_MODEL:
        if ASSISTANT_MODEL in candidates:
            return ASSISTANT_MODEL
        logger.warning(f"ASSISTANT_MODEL {ASSISTANT_MODEL} is not available; choosing another")
    for model_id in PREFERRED_MODELS:
        if model_id in candidates:
            return model_id
    if candidates:
        return candidates[0]
    raise ExecutorError("No AI models available. Configure at least one provider API key.")


def build_system_prompt(
    registry: Optional[ExecutorRegistry] = None,
    catalog: Optional[ModelCatalog] = None,
    standard_registry: Optional[StandardRegistry] = None,
) -> str:
    registry = registry or get_executor_registry()
    catalog = catalog or get_model_catalog()
    standard_registry = standard_registry or get_standard_registry()
    available = catalog.available()
    return _env.from_string(SYSTEM_PROMPT_TEMPLATE).render(
        executors=registry.list_info(),
        text_models=[m for m in available if not m.supports_image_generation],
        image_models=[m for m in available if m.supports_image_generation],
        standard_variables=["{{" + name + "}}" for name in standard_registry.names],
    )


def build_transcript(messages: list[ConversationMessage]) -> str:
    """Flatten the conversation into one prompt, reminding the model of the format."""
    turns = []
    for i, message in enumerate(messages):
        content = message.content
        if i == len(messages) - 1 and message.role == "user":
            content += FORMAT_REMINDER
        speaker = "User" if message.role == "user" else "Assistant"
        turns.append(f"{speaker}: {content}")
    return "\n\n".join(turns)


def _try_workflow(text: str) -> Optional[GeneratedWorkflow]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return GeneratedWorkflow.model_validate(data)
    except PydanticValidationError as e:
        logger.warning(f"Assistant workflow JSON did not validate: {e}")
        return None


def extract_suggestions(message: str) -> list[str]:
    match = _SUGGESTIONS_RE.search(message)
    if match is None:
        return []
    lines = (_LIST_MARKER_RE.sub("", line).strip() for line in match.group(1).splitlines())
    return [line for line in lines if line]


def parse_assistant_reply(content: str) -> AssistantResponse:
    """Split a model reply into prose, an optional workflow and suggestions.

    A ```workflow-json fence is preferred, then a ```json fence, then any
    bare object with "name" and "steps". Fenced JSON is removed from the
    message; bare JSON is left in place.
    """
    message = content
    workflow = None
    for fence in _FENCES:
        match = fence.search(content)
        if match:
            workflow = _try_workflow(match.group(1))
            if workflow is not None:
                message = (content[:match.start()] + content[match.end():]).strip()
                break
    if workflow is None:
        match = _RAW_WORKFLOW_RE.search(content)
        if match:
            workflow = _try_workflow(match.group(0))

    return AssistantResponse(
        message=message,
        workflow=workflow,
        suggestions=extract_suggestions(message),
    )


def generate_workflow(
    messages: list[ConversationMessage],
    backend_factory: Callable[[str], ModelBackend] = get_backend,
    registry: Optional[ExecutorRegistry] = None,
    catalog: Optional[ModelCatalog] = None,
    standard_registry: Optional[StandardRegistry] = None,
) -> AssistantResponse:
    """Answer the conversation, drafting a workflow when the model proposes one.

    Raises:
        ExecutorError: no model available, or the model call failed
    """
    if not messages:
        return AssistantResponse(
            message="Describe the workflow you want to build.",
            suggestions=list(STARTER_SUGGESTIONS),
        )

    model_id = select_model(catalog)
    result, _ = run_llm_call(
        backend_factory(model_id),
        build_transcript(messages),
        max_tokens=ASSISTANT_MAX_TOKENS,
        temperature=0.7,
        system_prompt=build_system_prompt(registry, catalog, standard_registry),
        label="assistant",
    )

    reply = parse_assistant_reply(result.content)
    reply.model_used = result.model_id
    if reply.workflow is None:
        logger.warning(
            f"Assistant reply from {model_id} had no workflow JSON "
            f"({len(result.content)} chars)"
        )
    else:
        logger.info(
            f"Assistant drafted '{reply.workflow.name}' "
            f"({len(reply.workflow.steps)} steps) with {model_id}"
        )
    return reply


def to_recipe(workflow: GeneratedWorkflow) -> RecipeCreate:
    """Turn a draft into a recipe body.

    Steps are numbered in order. Each step declares the required inputs its
    own prompt template references.
    """
    inputs = {i.name: i for i in workflow.required_inputs}
    steps = []
    for order, draft in enumerate(workflow.steps, start=1):
        used = [name for name in extract_variables(draft.prompt_template) if name in inputs]
        steps.append(RecipeStep(
            step_order=order,
            step_name=draft.step_name or f"Step {order}",
            step_type=draft.step_type,
            ai_model=draft.ai_model,
            prompt_template=draft.prompt_template,
            output_format=draft.output_format,
            executor_config=draft.executor_config,
            input_config=[
                InputSpec(
                    name=name,
                    type=inputs[name].type,
                    label=name.replace("_", " ").capitalize(),
                    description=inputs[name].description,
                )
                for name in used
            ],
        ))
    return RecipeCreate(
        name=workflow.name,
        description=workflow.description,
        is_template=False,
        steps=steps,
    )
