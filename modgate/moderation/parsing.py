"""
Parsing of the vision model's JSON-in-text replies.

The model is asked for a bare JSON object but sometimes wraps it in a
markdown code fence or surrounds it with prose. Parsing tries the reply as-is,
then the fence-stripped text, then the outermost {...} span.
"""
import json
import logging
import re
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from modgate.errors import ClassifierResponseError

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^\s*```(?:json|JSON)?\s*(.*?)\s*```\s*$", re.DOTALL)


class VisionAnalysis(BaseModel):
    """Reply schema requested from the vision model. Only isSafe is required."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_safe: bool = Field(alias="isSafe")
    reason: Optional[str] = None
    confidence: Optional[float] = None
    flags: List[str] = []
    detected_objects: Optional[List[str]] = Field(default=None, alias="detectedObjects")
    adult_content: Optional[bool] = Field(default=None, alias="adultContent")
    violence: Optional[bool] = None
    hate: Optional[bool] = None

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, v: Optional[float]) -> Optional[float]:
        if v is None:
            return None
        return max(0.0, min(1.0, float(v)))

    @field_validator("flags", mode="before")
    @classmethod
    def _coerce_flags(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return [str(f) for f in v]


def _strip_code_fence(text: str) -> str:
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text


def _brace_span(text: str) -> Optional[str]:
    start, end = text.find("{"), text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start:end + 1]


def _candidates(reply: str):
    yield reply
    stripped = _strip_code_fence(reply)
    if stripped != reply:
        yield stripped
    span = _brace_span(stripped)
    if span is not None and span != stripped:
        yield span


def parse_vision_reply(reply: str) -> VisionAnalysis:
    """
    Parse a vision reply into a VisionAnalysis.

    Raises:
        ClassifierResponseError: if no candidate parses into the schema.
    """
    if not reply or not reply.strip():
        raise ClassifierResponseError("Empty vision reply")

    last_error = None
    for candidate in _candidates(reply.strip()):
        try:
            data = json.loads(candidate)
        except ValueError as e:
            last_error = e
            continue
        if not isinstance(data, dict):
            last_error = ValueError(f"expected a JSON object, got {type(data).__name__}")
            continue
        try:
            return VisionAnalysis.model_validate(data)
        except ValidationError as e:
            last_error = e
            continue

    logger.warning(f"[PARSE] Unparseable vision reply: {reply[:200]!r}")
    raise ClassifierResponseError(f"Failed to parse vision reply: {last_error}")
