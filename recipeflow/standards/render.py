"""Company-standard variable registry and prompt rendering.

A fixed set of well-known variable names (brand_voice, amazon_requirements,
...) is resolved against the user's stored standards instead of user input.
Matching is forgiving: case and underscores are ignored, and any variable
whose normalized name contains a standard's normalized name matches it
(so `{{ourBrandVoice}}` resolves like `{{brand_voice}}`).
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from recipeflow.standards.schemas import (
    CompanyStandard,
    ImageContent,
    PlatformContent,
    StandardType,
    VoiceContent,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StandardVariable:
    """A reserved variable name and how it selects a stored standard."""

    name: str
    standard_type: StandardType
    keywords: tuple[str, ...]


# Order matters: the first variable whose normalized name matches wins.
STANDARD_VARIABLES: tuple[StandardVariable, ...] = (
    StandardVariable("brand_voice", StandardType.VOICE, ("voice", "brand", "tone")),
    StandardVariable("amazon_requirements", StandardType.PLATFORM, ("amazon",)),
    StandardVariable(
        "social_media_guidelines",
        StandardType.PLATFORM,
        ("social", "media", "instagram", "tiktok", "facebook"),
    ),
    StandardVariable("image_style_guidelines", StandardType.IMAGE, ("image", "photo", "style")),
    StandardVariable("platform_requirements", StandardType.PLATFORM, ("platform",)),
    StandardVariable("tone_guidelines", StandardType.VOICE, ("tone",)),
    StandardVariable("content_guidelines", StandardType.VOICE, ("content", "guideline")),
)


def _normalize(name: str) -> str:
    return name.lower().replace("_", "")


class StandardRegistry:
    """Read-mostly registry of the reserved standard variable names."""

    def __init__(self, variables: tuple[StandardVariable, ...] = STANDARD_VARIABLES):
        self._variables = variables

    @property
    def variables(self) -> tuple[StandardVariable, ...]:
        return self._variables

    @property
    def names(self) -> list[str]:
        return [v.name for v in self._variables]

    def match(self, variable_name: str) -> Optional[StandardVariable]:
        """Return the standard variable this name refers to, or None."""
        normalized = _normalize(variable_name)
        for var in self._variables:
            if _normalize(var.name) in normalized:
                return var
        return None

    def is_standard(self, variable_name: str) -> bool:
        return self.match(variable_name) is not None

    def select(
        self,
        var: StandardVariable,
        standards: list[CompanyStandard],
    ) -> Optional[CompanyStandard]:
        """Pick the user's standard for a variable: first of the right type
        whose name mentions a keyword, else the first of that type."""
        candidates = [s for s in standards if s.standard_type == var.standard_type]
        if not candidates:
            return None
        for standard in candidates:
            lowered = standard.name.lower()
            if any(keyword in lowered for keyword in var.keywords):
                return standard
        return candidates[0]

    def render_for(self, variable_name: str, standards: list[CompanyStandard]) -> str:
        """Render the standard a variable refers to ('' if the user has none)."""
        var = self.match(variable_name)
        if var is None:
            return ""
        standard = self.select(var, standards)
        if standard is None:
            return ""
        return render_standard(standard)


def render_standard(standard: CompanyStandard) -> str:
    """Format a standard's content as prompt text.

    JSON content is formatted per type; anything else is injected verbatim.
    """
    try:
        data = json.loads(standard.content)
    except (json.JSONDecodeError, TypeError):
        return standard.content
    if not isinstance(data, dict):
        return standard.content

    lines: list[str] = []
    try:
        if standard.standard_type == StandardType.VOICE:
            voice = VoiceContent.model_validate(data)
            if voice.tone:
                lines.append(f"Tone: {voice.tone}")
            if voice.style:
                lines.append(f"Style: {voice.style}")
            if voice.guidelines:
                lines.append("Guidelines:")
                lines.extend(f"- {g}" for g in voice.guidelines)
        elif standard.standard_type == StandardType.PLATFORM:
            platform = PlatformContent.model_validate(data)
            if platform.platform:
                lines.append(f"Platform: {platform.platform}")
            if platform.requirements:
                lines.append("Requirements:")
                lines.extend(f"- {r}" for r in platform.requirements)
            if platform.character_limits:
                lines.append("Character Limits:")
                lines.extend(f"- {k}: {v}" for k, v in platform.character_limits.items())
        elif standard.standard_type == StandardType.IMAGE:
            image = ImageContent.model_validate(data)
            if image.style:
                lines.append(f"Style: {image.style}")
            if image.dimensions:
                lines.append(f"Dimensions: {image.dimensions}")
            if image.guidelines:
                lines.append("Guidelines:")
                lines.extend(f"- {g}" for g in image.guidelines)
    except PydanticValidationError as e:
        logger.warning(f"Standard {standard.id} content does not match its type, using raw text: {e}")
        return standard.content

    return "\n".join(lines)


# Global registry instance
_registry: Optional[StandardRegistry] = None


def get_standard_registry() -> StandardRegistry:
    """Get the global standard variable registry."""
    global _registry
    if _registry is None:
        _registry = StandardRegistry()
    return _registry
