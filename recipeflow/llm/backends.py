"""Provider backends for AI steps: OpenAI, Anthropic, Gemini and an offline mock.

Every backend returns an LLMCallResult, whatever the provider. Backends own
client setup, credentials, vision attachments, image generation and token
accounting; retries live in llm/runner.py.
"""

import base64
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol, runtime_checkable

from recipeflow.errors import ExecutorError

logger = logging.getLogger(__name__)


@dataclass
class ImagePart:
    """An image sent to or returned from a model (base64, optionally a data URL)."""

    data: str
    media_type: str = "image/png"

    def raw_base64(self) -> str:
        if self.data.startswith("data:") and "," in self.data:
            return self.data.split(",", 1)[1]
        return self.data

    def data_url(self) -> str:
        if self.data.startswith("data:"):
            return self.data
        return f"data:{self.media_type};base64,{self.data}"


@dataclass
class LLMCallResult:
    """Normalized response from any LLM backend."""

    content: str
    model_id: str
    input_tokens: int
    output_tokens: int
    duration_ms: int
    images: list[ImagePart] = field(default_factory=list)


def _http_timeout():
    import httpx
    return httpx.Timeout(
        connect=30.0,
        read=600.0,  # 10 min for long generations
        write=60.0,
        pool=30.0,
    )


@runtime_checkable
class ModelBackend(Protocol):
    """Protocol for LLM backend implementations."""

    @property
    def model_id(self) -> str: ...

    def execute_sync(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        images: Optional[list[ImagePart]] = None,
        system_prompt: Optional[str] = None,
        label: str = "",
    ) -> LLMCallResult: ...

    def generate_images(
        self,
        prompt: str,
        *,
        number_of_images: int = 1,
        aspect_ratio: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        images: Optional[list[ImagePart]] = None,
        label: str = "",
    ) -> LLMCallResult: ...


class OpenAIBackend:
    """OpenAI chat completions backend (text and vision).

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, model_id: str = "gpt-4o"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        from openai import OpenAI

        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ExecutorError(
                "OPENAI_API_KEY not set. Set the environment variable to use OpenAI models."
            )
        return OpenAI(api_key=api_key, timeout=_http_timeout(), max_retries=0)

    def execute_sync(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        images: Optional[list[ImagePart]] = None,
        system_prompt: Optional[str] = None,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        start_time = time.time()

        if images:
            content: Any = [{"type": "text", "text": prompt}] + [
                {"type": "image_url", "image_url": {"url": img.data_url()}}
                for img in images
            ]
        else:
            content = prompt

        messages: list[dict[str, Any]] = [{"role": "user", "content": content}]
        if system_prompt:
            messages.insert(0, {"role": "system", "content": system_prompt})

        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if top_p is not None:
            kwargs["top_p"] = top_p

        logger.info(
            f"[{label}] OpenAI call: model={self._model_id}, max_tokens={max_tokens}, "
            f"images={len(images or [])}"
        )
        response = client.chat.completions.create(**kwargs)
        duration_ms = int((time.time() - start_time) * 1000)

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        if not text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        usage = response.usage
        return LLMCallResult(
            content=text.strip(),
            model_id=self._model_id,
            input_tokens=getattr(usage, "prompt_tokens", 0) if usage else 0,
            output_tokens=getattr(usage, "completion_tokens", 0) if usage else 0,
            duration_ms=duration_ms,
        )

    def generate_images(self, prompt: str, **kwargs) -> LLMCallResult:
        raise ExecutorError(f"Model {self._model_id} does not support image generation")


class AnthropicBackend:
    """Anthropic Claude backend (text and vision).

    Requires ANTHROPIC_API_KEY environment variable.
    """

    def __init__(self, model_id: str = "claude-sonnet-4-5"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        from anthropic import Anthropic

        if not os.environ.get("ANTHROPIC_API_KEY"):
            raise ExecutorError(
                "ANTHROPIC_API_KEY not set. Set the environment variable to use Claude models."
            )
        return Anthropic(timeout=_http_timeout(), max_retries=0)

    def execute_sync(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        images: Optional[list[ImagePart]] = None,
        system_prompt: Optional[str] = None,
        label: str = "",
    ) -> LLMCallResult:
        client = self._get_client()
        start_time = time.time()

        if images:
            content: Any = [
                {
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": img.media_type,
                        "data": img.raw_base64(),
                    },
                }
                for img in images
            ] + [{"type": "text", "text": prompt}]
        else:
            content = prompt

        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "max_tokens": max_tokens,
            "temperature": min(temperature, 1.0),
            "messages": [{"role": "user", "content": content}],
        }
        if top_p is not None:
            kwargs["top_p"] = top_p
        if system_prompt:
            kwargs["system"] = system_prompt

        logger.info(
            f"[{label}] Anthropic call: model={self._model_id}, max_tokens={max_tokens}, "
            f"images={len(images or [])}"
        )
        response = client.messages.create(**kwargs)
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                raw_text += block.text

        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        logger.info(
            f"[{label}] Anthropic completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms"
        )
        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )

    def generate_images(self, prompt: str, **kwargs) -> LLMCallResult:
        raise ExecutorError(f"Model {self._model_id} does not support image generation")


class GeminiBackend:
    """Google Gemini backend (text, vision and image generation).

    Reads GEMINI_API_KEY, falling back to GOOGLE_API_KEY. Image requests ask
    generate_content for IMAGE modality, one call per image.
    """

    def __init__(self, model_id: str = "gemini-2.5-flash"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _get_client(self):
        """Client for the configured key; google-genai is imported on first use."""
        try:
            from google import genai
        except ImportError:
            raise ExecutorError(
                "google-genai package not installed. "
                "Install with: pip install google-genai"
            )

        api_key = os.environ.get("GEMINI_API_KEY") or os.environ.get("GOOGLE_API_KEY")
        if not api_key:
            raise ExecutorError(
                "GEMINI_API_KEY not set. Set the environment variable to use Gemini."
            )
        return genai.Client(api_key=api_key)

    def _contents(self, prompt: str, images: Optional[list[ImagePart]]) -> list:
        from google.genai import types

        parts = [
            types.Part.from_bytes(
                data=base64.b64decode(img.raw_base64()),
                mime_type=img.media_type,
            )
            for img in images or []
        ]
        parts.append(types.Part.from_text(text=prompt))
        return parts

    def execute_sync(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        images: Optional[list[ImagePart]] = None,
        system_prompt: Optional[str] = None,
        label: str = "",
    ) -> LLMCallResult:
        from google.genai import types

        client = self._get_client()
        start_time = time.time()

        config_kwargs: dict[str, Any] = {
            "temperature": temperature,
            "max_output_tokens": max_tokens,
        }
        if top_p is not None:
            config_kwargs["top_p"] = top_p
        if system_prompt:
            config_kwargs["system_instruction"] = system_prompt

        logger.info(
            f"[{label}] Gemini call: model={self._model_id}, max_tokens={max_tokens}, "
            f"images={len(images or [])}"
        )
        response = client.models.generate_content(
            model=self._model_id,
            contents=self._contents(prompt, images),
            config=types.GenerateContentConfig(**config_kwargs),
        )
        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = ""
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts:
                if getattr(part, "thought", False):
                    continue
                raw_text += getattr(part, "text", "") or ""

        if not raw_text.strip():
            raise RuntimeError(f"[{label}] Empty response from {self._model_id}")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", 0) or 0 if usage else 0
        output_tokens = getattr(usage, "candidates_token_count", 0) or 0 if usage else 0

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

    def generate_images(
        self,
        prompt: str,
        *,
        number_of_images: int = 1,
        aspect_ratio: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        images: Optional[list[ImagePart]] = None,
        label: str = "",
    ) -> LLMCallResult:
        """Generate images with a Gemini image model.

        The model returns one image per call, so the request is repeated
        number_of_images times. Reference images are sent as input parts.
        """
        from google.genai import types

        client = self._get_client()
        start_time = time.time()

        full_prompt = prompt
        if aspect_ratio:
            full_prompt += f"\n\nAspect ratio: {aspect_ratio}"
        if negative_prompt:
            full_prompt += f"\n\nAvoid: {negative_prompt}"

        config = types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"])
        generated: list[ImagePart] = []
        text = ""
        input_tokens = 0
        output_tokens = 0

        for i in range(number_of_images):
            logger.info(f"[{label}] Gemini image generation {i + 1}/{number_of_images}")
            response = client.models.generate_content(
                model=self._model_id,
                contents=self._contents(full_prompt, images),
                config=config,
            )
            for candidate in response.candidates or []:
                if not candidate.content:
                    continue
                for part in candidate.content.parts or []:
                    inline = getattr(part, "inline_data", None)
                    if inline is not None and inline.data:
                        data = inline.data
                        if isinstance(data, bytes):
                            data = base64.b64encode(data).decode("ascii")
                        generated.append(ImagePart(data=data, media_type=inline.mime_type or "image/png"))
                    elif getattr(part, "text", None):
                        text += part.text
            usage = getattr(response, "usage_metadata", None)
            if usage:
                input_tokens += getattr(usage, "prompt_token_count", 0) or 0
                output_tokens += getattr(usage, "candidates_token_count", 0) or 0

        if not generated:
            raise RuntimeError(f"[{label}] {self._model_id} returned no images")

        return LLMCallResult(
            content=text.strip() or f"Generated {len(generated)} image(s)",
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=int((time.time() - start_time) * 1000),
            images=generated,
        )


# 1x1 PNG used by the mock image generator
MOCK_IMAGE_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mP8z8DwHwAFBQIAX8jx0gAAAABJRU5ErkJggg=="
)

MOCK_RESPONSES = {
    "research": """## Product Research Results

### Key Features
- Voice-controlled operation
- Energy-efficient design
- Easy installation

### Target Audience
- Tech-savvy homeowners aged 25-45
- Busy professionals seeking convenience

### Price Range
$49.99 - $149.99 depending on features and bundle options""",
    "listing": """## Amazon Product Listing

### Title
Premium Smart Home Device - Voice Controlled, Energy Efficient, Easy Setup

### Bullet Points
- VOICE CONTROL - Simply speak to control your device hands-free
- ENERGY EFFICIENT - Save up to 30% on energy costs with smart scheduling
- EASY INSTALLATION - Set up in minutes with no tools required

### Description
Transform your home into a smart home with our premium device.""",
    "image_analysis": """## Image Analysis Results

### Visual Elements
- Clean, modern design with minimalist aesthetics
- Professional product photography with soft lighting

### Recommendations
1. Use similar lighting in future product shots
2. Maintain the minimalist color palette""",
    "default": """## AI Generated Content

This is a mock response generated for testing purposes.

### Summary
The mock backend simulates a provider without network calls or API costs.""",
    "workflow": """Here is a two-step workflow that researches a product and drafts a listing.

```workflow-json
{
  "name": "Product Listing Draft",
  "description": "Research a product, then write a marketplace listing",
  "steps": [
    {
      "step_name": "Research",
      "step_type": "ai",
      "ai_model": "mock",
      "prompt_template": "Research {{product_name}} and list its key features.",
      "output_format": "markdown"
    },
    {
      "step_name": "Listing",
      "step_type": "ai",
      "ai_model": "mock",
      "prompt_template": "Write an Amazon listing from this research:\\n{{step_1_output}}",
      "output_format": "markdown"
    }
  ],
  "requiredInputs": [
    {"name": "product_name", "type": "text", "description": "Product to research"}
  ]
}
```

Suggestions:
1. Add a translation step for other marketplaces
2. Scrape competitor reviews before the research step
""",
}


class MockBackend:
    """Offline backend with canned, deterministic responses.

    MOCK_LLM_LATENCY (seconds, default 0) simulates provider latency.
    """

    def __init__(self, model_id: str = "mock"):
        self._model_id = model_id

    @property
    def model_id(self) -> str:
        return self._model_id

    def _simulate_latency(self) -> None:
        latency = float(os.environ.get("MOCK_LLM_LATENCY", "0") or 0)
        if latency > 0:
            time.sleep(latency)

    def execute_sync(
        self,
        prompt: str,
        *,
        max_tokens: int,
        temperature: float = 0.7,
        top_p: Optional[float] = None,
        images: Optional[list[ImagePart]] = None,
        system_prompt: Optional[str] = None,
        label: str = "",
    ) -> LLMCallResult:
        self._simulate_latency()
        lowered = prompt.lower()
        if system_prompt and "workflow-json" in system_prompt:
            key = "workflow"
        elif images:
            key = "image_analysis"
        elif "research" in lowered:
            key = "research"
        elif "listing" in lowered or "amazon" in lowered:
            key = "listing"
        else:
            key = "default"
        content = MOCK_RESPONSES[key]
        return LLMCallResult(
            content=content,
            model_id=self._model_id,
            input_tokens=len(prompt) // 4,
            output_tokens=len(content) // 4,
            duration_ms=0,
        )

    def generate_images(
        self,
        prompt: str,
        *,
        number_of_images: int = 1,
        aspect_ratio: Optional[str] = None,
        negative_prompt: Optional[str] = None,
        images: Optional[list[ImagePart]] = None,
        label: str = "",
    ) -> LLMCallResult:
        self._simulate_latency()
        return LLMCallResult(
            content=f"Generated {number_of_images} mock image(s) for testing.",
            model_id=self._model_id,
            input_tokens=len(prompt) // 4,
            output_tokens=0,
            duration_ms=0,
            images=[
                ImagePart(data=MOCK_IMAGE_BASE64, media_type="image/png")
                for _ in range(number_of_images)
            ],
        )
