"""Variable resolution for prompt templates.

Templates reference values as {{identifier}}. Each identifier is classified,
first match wins:

1. step_<N>_output  -> content of completed step N (UnresolvedVariable if
   step N has not completed)
2. a company-standard name (see standards.render) -> the user's rendered
   standard, or '' if the user has none of that type
3. anything else -> a user input (MissingRequiredInput if absent and required)

Resolution is all-or-nothing and pure: the same template and context always
yield the same text, and nothing is returned unless every token resolved.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from recipeflow.errors import InvalidInput, MissingRequiredInput, UnresolvedVariable
from recipeflow.recipes.schemas import InputSpec, InputType, RecipeStep
from recipeflow.standards.render import StandardRegistry, get_standard_registry
from recipeflow.standards.schemas import CompanyStandard

logger = logging.getLogger(__name__)

VARIABLE_RE = re.compile(r"\{\{([^}]+)\}\}")
STEP_OUTPUT_RE = re.compile(r"^step_(\d+)_output$")
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/=]+$")

IMAGE_PLACEHOLDER = "[See attached image: {name}]"


@dataclass(frozen=True)
class ImageInput:
    """An image routed out-of-band to executors that accept images."""

    name: str
    data: str
    media_type: str = "image/jpeg"


@dataclass
class ResolutionContext:
    """Everything a template may draw from."""

    user_inputs: dict[str, Any] = field(default_factory=dict)
    step_outputs: dict[int, str] = field(default_factory=dict)
    standards: list[CompanyStandard] = field(default_factory=list)
    input_specs: dict[str, InputSpec] = field(default_factory=dict)
    registry: StandardRegistry = field(default_factory=get_standard_registry)


@dataclass
class ResolvedTemplate:
    text: str
    images: list[ImageInput] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)


def extract_variables(template: str) -> list[str]:
    """Unique variable names in order of first appearance."""
    seen: list[str] = []
    for match in VARIABLE_RE.finditer(template or ""):
        name = match.group(1).strip()
        if name and name not in seen:
            seen.append(name)
    return seen


def step_output_number(name: str) -> Optional[int]:
    match = STEP_OUTPUT_RE.match(name)
    return int(match.group(1)) if match else None


def is_user_variable(name: str, registry: Optional[StandardRegistry] = None) -> bool:
    registry = registry or get_standard_registry()
    return step_output_number(name) is None and not registry.is_standard(name)


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def looks_like_image(value: Any) -> bool:
    if isinstance(value, dict):
        return "base64" in value or "data" in value
    if not isinstance(value, str):
        return False
    return value.startswith("data:image/") or (
        len(value) > 100 and bool(_BASE64_RE.match(value[:100]))
    )


def media_type_of(data: str) -> str:
    for kind in ("jpeg", "png", "gif", "webp"):
        if data.startswith(f"data:image/{kind}"):
            return f"image/{kind}"
    return "image/jpeg"


def _to_images(name: str, value: Any) -> list[ImageInput]:
    values = value if isinstance(value, list) else [value]
    images = []
    for item in values:
        if _is_blank(item):
            continue
        if isinstance(item, dict):
            data = item.get("base64") or item.get("data") or ""
            media_type = item.get("media_type") or item.get("mediaType") or media_type_of(data)
        else:
            data = str(item)
            media_type = media_type_of(data)
        images.append(ImageInput(name=name, data=data, media_type=media_type))
    return images


def split_url_list(value: Any) -> list[str]:
    """Non-empty entries of a url list given as a list or newline/comma text."""
    if isinstance(value, str):
        items = re.split(r"[\n,]", value)
    elif isinstance(value, list):
        items = [str(v) for v in value if v is not None]
    else:
        items = [str(value)]
    return [item.strip() for item in items if item.strip()]


def file_content(value: Any) -> str:
    if isinstance(value, dict):
        content = value.get("content", value.get("text", ""))
        return content if isinstance(content, str) else json.dumps(content, ensure_ascii=False)
    return str(value)


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, sort_keys=True)
    return str(value)


def flatten_input(name: str, value: Any, spec: Optional[InputSpec]) -> tuple[str, list[ImageInput]]:
    """Flatten one user input to prompt text plus any out-of-band images."""
    input_type = spec.type if spec else None
    if input_type == InputType.IMAGE or (input_type is None and looks_like_image(value)):
        images = _to_images(name, value)
        return IMAGE_PLACEHOLDER.format(name=name), images
    if input_type == InputType.URL_LIST:
        return "\n".join(split_url_list(value)), []
    if input_type == InputType.FILE:
        return file_content(value), []
    return _stringify(value), []


def resolve(template: str, context: ResolutionContext) -> ResolvedTemplate:
    """Expand every {{variable}} in a template, or raise without partial output.

    Raises:
        UnresolvedVariable: a referenced step has no completed output
        MissingRequiredInput: a required user input is absent or blank
    """
    names = extract_variables(template)
    values: dict[str, str] = {}
    images: list[ImageInput] = []
    unresolved_steps: list[str] = []
    missing: list[str] = []

    for name in names:
        step_number = step_output_number(name)
        if step_number is not None:
            if step_number in context.step_outputs:
                values[name] = context.step_outputs[step_number]
            else:
                unresolved_steps.append(name)
            continue

        if context.registry.is_standard(name):
            values[name] = context.registry.render_for(name, context.standards)
            continue

        spec = context.input_specs.get(name)
        value = context.user_inputs.get(name)
        if _is_blank(value):
            if spec is None or spec.required:
                missing.append(name)
            else:
                values[name] = spec.default or ""
            continue

        text, found_images = flatten_input(name, value, spec)
        values[name] = text
        images.extend(found_images)

    if unresolved_steps:
        raise UnresolvedVariable(unresolved_steps, reason="referenced step has not completed")
    if missing:
        raise MissingRequiredInput(missing)

    text = VARIABLE_RE.sub(lambda m: values.get(m.group(1).strip(), m.group(0)), template)
    variables = {
        name: value for name, value in values.items()
        if step_output_number(name) is None
    }
    return ResolvedTemplate(text=text, images=images, variables=variables)


def merged_input_specs(steps: Iterable[RecipeStep]) -> dict[str, InputSpec]:
    """Input specs across all steps; the earliest declaration of a name wins."""
    specs: dict[str, InputSpec] = {}
    for step in steps:
        for spec in step.input_config:
            specs.setdefault(spec.name, spec)
    return specs


def required_user_inputs(
    templates: Iterable[str],
    specs: dict[str, InputSpec],
    registry: Optional[StandardRegistry] = None,
) -> list[str]:
    """User inputs a run needs: referenced variables not marked optional,
    plus every declared spec marked required."""
    registry = registry or get_standard_registry()
    required: list[str] = []
    for template in templates:
        for name in extract_variables(template):
            if not is_user_variable(name, registry):
                continue
            spec = specs.get(name)
            if (spec is None or spec.required) and name not in required:
                required.append(name)
    for name, spec in specs.items():
        if spec.required and name not in required:
            required.append(name)
    return required


def _size_mb(value: Any) -> float:
    if isinstance(value, dict):
        value = value.get("base64") or value.get("data") or value.get("content") or ""
    if not isinstance(value, str):
        value = str(value)
    if value.startswith("data:") and "," in value:
        # base64 payload decodes to ~3/4 of its length
        return len(value.split(",", 1)[1]) * 3 / 4 / (1024 * 1024)
    return len(value.encode("utf-8")) / (1024 * 1024)


def validate_user_inputs(
    user_inputs: dict[str, Any],
    required: list[str],
    specs: dict[str, InputSpec],
) -> None:
    """Check presence and declared rules of user inputs before a run starts.

    Raises:
        MissingRequiredInput: a required input is absent or blank
        InvalidInput: an input violates its spec's count or size limits
    """
    missing = [name for name in required if _is_blank(user_inputs.get(name))]
    if missing:
        raise MissingRequiredInput(missing)

    problems: list[str] = []
    for name, spec in specs.items():
        value = user_inputs.get(name)
        if _is_blank(value):
            continue
        if spec.type == InputType.URL_LIST:
            items: list = split_url_list(value)
        elif spec.type == InputType.IMAGE and isinstance(value, list):
            items = [v for v in value if not _is_blank(v)]
        else:
            items = [value]
        if spec.min_items is not None and len(items) < spec.min_items:
            problems.append(f"{name}: at least {spec.min_items} item(s) required, got {len(items)}")
        if spec.max_items is not None and len(items) > spec.max_items:
            problems.append(f"{name}: at most {spec.max_items} item(s) allowed, got {len(items)}")
        if spec.max_size_mb is not None and spec.type in (InputType.IMAGE, InputType.FILE):
            for item in items:
                size = _size_mb(item)
                if size > spec.max_size_mb:
                    problems.append(f"{name}: {size:.1f}MB exceeds limit of {spec.max_size_mb}MB")
                    break
    if problems:
        raise InvalidInput("Invalid inputs: " + "; ".join(problems))
