"""Single LLM call with bounded retry.

Retries transient provider errors with backoff. Misconfiguration
(ExecutorError from a backend) and request errors (auth failure, oversized
prompt) are raised at once. Every failure leaves this module as an
ExecutorError.
"""

import logging
import os
import time
from typing import Callable, Optional

from recipeflow.errors import ExecutorError
from recipeflow.llm.backends import ImagePart, LLMCallResult, ModelBackend

logger = logging.getLogger(__name__)

# Retry settings
MAX_RETRIES = int(os.environ.get("LLM_MAX_RETRIES", "2"))
RETRY_DELAYS = [2, 5, 15]  # seconds

_NON_RETRYABLE = (
    "not set",
    "invalid_api_key",
    "authentication",
    "permission",
    "context_length_exceeded",
    "too many tokens",
    "prompt is too long",
    "does not support",
    "not found",
    "invalid_request",
)


def _is_retryable(error: Exception) -> bool:
    error_str = str(error).lower()
    return not any(marker in error_str for marker in _NON_RETRYABLE)


def run_llm_call(
    backend: ModelBackend,
    prompt: str,
    *,
    generate_images: bool = False,
    max_tokens: int = 4096,
    temperature: float = 0.7,
    top_p: Optional[float] = None,
    number_of_images: int = 1,
    aspect_ratio: Optional[str] = None,
    negative_prompt: Optional[str] = None,
    images: Optional[list[ImagePart]] = None,
    system_prompt: Optional[str] = None,
    cancellation_check: Optional[Callable[[], bool]] = None,
    label: str = "",
) -> tuple[LLMCallResult, int]:
    """Execute one text or image-generation call, retrying transient failures.

    Returns:
        (result, retries used)

    Raises:
        InterruptedError: cancelled between attempts
        ExecutorError: non-retryable error, or retries exhausted
    """
    last_error: Optional[Exception] = None
    attempts = MAX_RETRIES + 1

    for attempt in range(attempts):
        if cancellation_check and cancellation_check():
            raise InterruptedError(f"[{label}] Cancelled before attempt {attempt + 1}")

        if attempt > 0:
            delay = RETRY_DELAYS[min(attempt - 1, len(RETRY_DELAYS) - 1)]
            logger.warning(
                f"[{label}] Retry {attempt}/{MAX_RETRIES} after {delay}s "
                f"(previous error: {last_error})"
            )
            time.sleep(delay)

        try:
            if generate_images:
                result = backend.generate_images(
                    prompt,
                    number_of_images=number_of_images,
                    aspect_ratio=aspect_ratio,
                    negative_prompt=negative_prompt,
                    images=images,
                    label=label,
                )
            else:
                result = backend.execute_sync(
                    prompt,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    top_p=top_p,
                    images=images,
                    system_prompt=system_prompt,
                    label=label,
                )
            logger.info(
                f"[{label}] Completed: {result.input_tokens}+{result.output_tokens} tokens, "
                f"{result.duration_ms}ms, {len(result.images)} image(s)"
            )
            return result, attempt

        except (InterruptedError, ExecutorError):
            raise

        except Exception as e:
            last_error = e
            logger.error(f"[{label}] Attempt {attempt + 1} failed: {e}")
            if not _is_retryable(e):
                raise ExecutorError(str(e)) from e

    raise ExecutorError(
        f"Failed after {attempts} attempts. Last error: {last_error}"
    )
