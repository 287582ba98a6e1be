"""Keyword classification of free-text model responses into concern levels."""

from libs.core.domain.entities import ConcernLevel

# Checked strongest first; the first level with any matching keyword wins.
CONCERN_KEYWORDS: tuple[tuple[ConcernLevel, tuple[str, ...]], ...] = (
    (ConcernLevel.CRITICAL, ("critical", "emergency", "immediate")),
    (ConcernLevel.HIGH, ("high", "urgent", "danger")),
    (ConcernLevel.MEDIUM, ("medium", "moderate", "attention")),
    (ConcernLevel.LOW, ("low", "minor", "slight")),
    (ConcernLevel.NONE, ("no concern", "normal", "fine", "safe")),
)

ERROR_PREFIX = "ERROR:"

_OBSERVATION_MARKERS = ("I see", "I notice", "The image shows", "This shows")


def parse_concern_level(response: str) -> ConcernLevel:
    """Map model text to a concern level; unrecognised text is LOW, never NONE."""
    lower = response.lower()
    for level, keywords in CONCERN_KEYWORDS:
        if any(keyword in lower for keyword in keywords):
            return level
    return ConcernLevel.LOW


def extract_description(response: str) -> str:
    lines = [line.strip() for line in response.splitlines() if line.strip()]
    for line in lines:
        if any(marker in line for marker in _OBSERVATION_MARKERS):
            return line
    if lines:
        return lines[0]
    return "Analysis complete"


def error_response(stage: str) -> str:
    return f"{ERROR_PREFIX} {stage} failed"
