"""Script step executor.

Runs an inline python3 or node script in a subprocess. The script reads a
JSON object on stdin (user inputs plus step_N_output for every completed
step) and whatever it prints to stdout becomes the step output.
"""

import json
import logging
import subprocess
from typing import Literal, Optional

from pydantic import BaseModel, Field

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

INLINE_FLAGS = {"python3": "-c", "node": "-e"}


class ScriptConfig(BaseModel):
    runtime: Literal["python3", "node"] = "python3"
    script: str = ""
    timeout: int = Field(default=60000, gt=0, description="milliseconds")


class ScriptExecutor(StepExecutor):
    type = "script"
    display_name = "Script"
    icon = "📜"
    description = "Run a Python or Node.js script with JSON input/output"
    config_model = ScriptConfig

    def config_schema(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="runtime",
                label="Runtime",
                type=ConfigFieldType.SELECT,
                required=True,
                default="python3",
                options=[
                    ConfigOption(value="python3", label="Python 3"),
                    ConfigOption(value="node", label="Node.js"),
                ],
            ),
            ConfigField(
                name="script",
                label="Script",
                type=ConfigFieldType.CODE,
                required=True,
                language="python",
                help_text="Receives JSON on stdin (user inputs + previous step outputs). Write output to stdout.",
            ),
            ConfigField(name="timeout", label="Timeout (ms)", type=ConfigFieldType.NUMBER, default=60000),
        ]

    def parse_config(self, step: RecipeStep) -> Optional[BaseModel]:
        config = super().parse_config(step)
        if not config.script:
            # Inline script in the prompt template
            config = config.model_copy(update={"script": step.prompt_template or ""})
        return config

    def check(self, step: RecipeStep, config: Optional[BaseModel]) -> list[str]:
        if not config.script.strip():
            return [f"Step {step.step_order} (script): script content is required"]
        return []

    def template_fields(self, step, config):
        return {}

    def execute(self, compiled: CompiledInput, step: RecipeStep) -> ExecutorResult:
        config: ScriptConfig = compiled.config or self.parse_config(step)
        if not config.script.strip():
            return ExecutorResult.failure("No script provided")

        payload = dict(compiled.user_inputs)
        for order, output in compiled.step_outputs.items():
            payload[f"step_{order}_output"] = output

        prompt_used = f"[{config.runtime}] {config.script[:200]}"
        timeout_s = config.timeout / 1000

        logger.info(f"Step {step.step_order}: running {config.runtime} script (timeout {timeout_s}s)")
        try:
            proc = subprocess.run(
                [config.runtime, INLINE_FLAGS[config.runtime], config.script],
                input=json.dumps(payload, ensure_ascii=False, default=str),
                capture_output=True,
                text=True,
                timeout=timeout_s,
            )
        except subprocess.TimeoutExpired:
            return ExecutorResult.failure(
                f"Script timed out after {config.timeout}ms", prompt_used=prompt_used
            )
        except OSError as e:
            return ExecutorResult.failure(
                f"Failed to spawn {config.runtime}: {e}", prompt_used=prompt_used
            )

        stderr = proc.stderr or ""
        if proc.returncode != 0:
            error = f"Script exited with code {proc.returncode}"
            if stderr:
                error += f": {stderr[:500]}"
            return ExecutorResult.failure(
                error,
                metadata={"exit_code": proc.returncode, "stderr": stderr[:2000]},
                prompt_used=prompt_used,
                model_used=config.runtime,
            )

        return ExecutorResult(
            success=True,
            content=proc.stdout,
            metadata={"runtime": config.runtime, "exit_code": 0, "stderr": stderr[:2000] or None},
            prompt_used=prompt_used,
            model_used=config.runtime,
        )
