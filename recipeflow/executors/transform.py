"""Data transform step executor.

Transforms:
    csv_to_json   CSV text (header row) -> JSON array of objects
    json_to_csv   JSON object/array -> CSV text
    field_map     rename/select fields: {"source": "target"}
    filter        keep rows where a sandboxed Jinja expression over `row` is true,
                  e.g. ``row.rating | float >= 4``

Input comes from a named user input or, with input_source "auto", from the
latest completed step output.
"""

import csv
import io
import json
import logging
from typing import Any, Literal, Optional

from jinja2 import TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment
from pydantic import BaseModel, Field

from recipeflow.executor.variables import file_content
from recipeflow.executors.base import (
    CompiledInput,
    ConfigField,
    ConfigFieldType,
    ConfigOption,
    ExecutorResult,
    StepExecutor,
)
from recipeflow.recipes.schemas import RecipeStep

logger = logging.getLogger(__name__)

TransformType = Literal["csv_to_json", "json_to_csv", "field_map", "filter"]

_sandbox = SandboxedEnvironment()


class TransformConfig(BaseModel):
    transform_type: TransformType = "csv_to_json"
    mapping: dict[str, str] = Field(default_factory=dict)
    filter_expression: Optional[str] = None
    input_source: str = "auto"
    delimiter: str = Field(default=",", min_length=1, max_length=1)


class TransformError(ValueError):
    pass


def csv_to_rows(text: str, delimiter: str = ",") -> list[dict[str, str]]:
    reader = csv.DictReader(io.StringIO(text.strip()), delimiter=delimiter)
    return [
        {k.strip(): (v or "").strip() for k, v in row.items() if k is not None}
        for row in reader
    ]


def rows_to_csv(rows: list[dict[str, Any]], delimiter: str = ",") -> str:
    if not rows:
        return ""
    headers = list(rows[0].keys())
    buf = io.StringIO()
    writer = csv.DictWriter(
        buf, fieldnames=headers, delimiter=delimiter, extrasaction="ignore", lineterminator="\n"
    )
    writer.writeheader()
    for row in rows:
        writer.writerow({h: "" if row.get(h) is None else row.get(h) for h in headers})
    return buf.getvalue().rstrip("\n")


def _as_rows(text: str, delimiter: str, allow_csv: bool) -> list[dict[str, Any]]:
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        if not allow_csv:
            raise TransformError("Input is not valid JSON")
        rows = csv_to_rows(text, delimiter)
        if not rows:
            raise TransformError("Input could not be parsed as JSON or CSV")
        return rows
    return parsed if isinstance(parsed, list) else [parsed]


def filter_rows(rows: list[Any], expression: str) -> list[Any]:
    """Rows for which the expression is truthy. A row that errors is dropped."""
    compiled = _sandbox.compile_expression(expression)
    kept = []
    for row in rows:
        try:
            if compiled(row=row):
                kept.append(row)
        except Exception as e:
            logger.debug(f"Filter expression failed on row, dropping it: {e}")
    return kept


class TransformExecutor(StepExecutor):
    type = "transform"
    display_name = "Data Transform"
    icon = "🔄"
    description = "Transform data between formats (CSV/JSON), map fields, or filter rows"
    config_model = TransformConfig

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="transform_type",
                label="Transform Type",
                type=ConfigFieldType.SELECT,
                required=True,
                default="csv_to_json",
                options=[
                    ConfigOption(value="csv_to_json", label="CSV → JSON"),
                    ConfigOption(value="json_to_csv", label="JSON → CSV"),
                    ConfigOption(value="field_map", label="Field Mapping"),
                    ConfigOption(value="filter", label="Filter Rows"),
                ],
            ),
            ConfigField(
                name="mapping",
                label="Field Mapping",
                type=ConfigFieldType.JSON,
                help_text='Source field to target field, e.g. {"old_name": "new_name"}',
            ),
            ConfigField(
                name="filter_expression",
                label="Filter Expression",
                help_text="Expression over `row`, e.g. row.price | float > 100",
            ),
            ConfigField(
                name="input_source",
                label="Input Source",
                default="auto",
                help_text='Input variable name, or "auto" for the previous step output',
            ),
            ConfigField(name="delimiter", label="CSV Delimiter", default=","),
        ]

    def check(self, step: RecipeStep, config: Optional[BaseModel]) -> list[str]:
        prefix = f"Step {step.step_order} (transform)"
        if config.transform_type == "field_map" and not config.mapping:
            return [f"{prefix}: mapping is required for field_map"]
        if config.transform_type == "filter":
            if not config.filter_expression:
                return [f"{prefix}: filter_expression is required for filter"]
            try:
                _sandbox.compile_expression(config.filter_expression)
            except TemplateSyntaxError as e:
                return [f"{prefix}: invalid filter_expression: {e}"]
        return []

    def template_fields(self, step, config):
        return {}

    def _input(self, compiled: CompiledInput, config: TransformConfig) -> str:
        if config.input_source and config.input_source != "auto":
            value = compiled.user_inputs.get(config.input_source)
            if isinstance(value, dict) and "content" in value:
                return file_content(value)
            if isinstance(value, str):
                return value
            if value:
                return json.dumps(value)
        return compiled.last_output() or ""

    def transform(self, text: str, config: TransformConfig) -> str:
        kind = config.transform_type
        if kind == "csv_to_json":
            return json.dumps(csv_to_rows(text, config.delimiter), indent=2)
        if kind == "json_to_csv":
            return rows_to_csv(_as_rows(text, config.delimiter, allow_csv=False), config.delimiter)
        if kind == "field_map":
            rows = _as_rows(text, config.delimiter, allow_csv=True)
            mapped = [
                {target: row.get(source) if isinstance(row, dict) else None
                 for source, target in config.mapping.items()}
                for row in rows
            ]
            return json.dumps(mapped, indent=2)
        rows = _as_rows(text, config.delimiter, allow_csv=True)
        return json.dumps(filter_rows(rows, config.filter_expression or "true"), indent=2)

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        config: TransformConfig = compiled.config or TransformConfig()
        text = self._input(compiled, config)
        if not text:
            return ExecutorResult.failure("No input data available to transform")

        try:
            result = self.transform(text, config)
        except (TransformError, TemplateSyntaxError) as e:
            return ExecutorResult.failure(f"{config.transform_type} failed: {e}")

        return ExecutorResult(
            success=True,
            content=result,
            metadata={
                "transform_type": config.transform_type,
                "input_length": len(text),
                "output_length": len(result),
            },
            prompt_used=f"[transform] {config.transform_type}",
            model_used="transform",
        )
