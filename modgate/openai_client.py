import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Set

import openai
from openai import AsyncOpenAI

from modgate.config import GatewayConfig
from modgate.errors import ClassifierResponseError, ClassifierTransportError

logger = logging.getLogger(__name__)

VISION_PROMPT = (
    "Analyze this image for inappropriate content. Check for: 1) Adult/sexual content "
    "2) Violence/gore 3) Hate symbols 4) Self-harm content 5) Illegal activities. "
    "Respond with valid JSON format only: {\"isSafe\": boolean, \"reason\": string, "
    "\"confidence\": number, \"flags\": [string], \"detectedObjects\": [string], "
    "\"adultContent\": boolean, \"violence\": boolean, \"hate\": boolean}"
)


@dataclass
class TextClassification:
    flagged_categories: Set[str] = field(default_factory=set)
    category_scores: Dict[str, float] = field(default_factory=dict)


def build_openai_client(config: GatewayConfig) -> AsyncOpenAI:
    """Create the shared SDK client (one per process)."""
    return AsyncOpenAI(
        api_key=config.openai_api_key,
        base_url=config.openai_api_url,
        timeout=config.fetch_timeout_seconds,
    )


def _as_dict(obj: Any) -> Dict[str, Any]:
    """SDK objects are pydantic models; keep the aliased names ("self-harm", "hate/threatening")."""
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump(by_alias=True)
    return dict(vars(obj))


class OpenAITextClassifier:
    """Text moderation through the /moderations endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "text-moderation-latest"):
        self.client = client
        self.model = model

    async def classify(self, text: str) -> TextClassification:
        preview = text[:100] + ("..." if len(text) > 100 else "")
        logger.debug(f"[OPENAI] Moderation request: {preview!r}")
        try:
            response = await self.client.moderations.create(input=text, model=self.model)
        except openai.APIError as e:
            raise ClassifierTransportError(f"OpenAI moderation request failed: {e}") from e

        results = getattr(response, "results", None)
        if not results:
            raise ClassifierResponseError("No results received from OpenAI Moderation API")

        categories = _as_dict(results[0].categories)
        scores = _as_dict(results[0].category_scores)
        return TextClassification(
            flagged_categories={name for name, hit in categories.items() if hit},
            category_scores={name: float(score) for name, score in scores.items() if score is not None},
        )


class OpenAIVisionClassifier:
    """Image moderation through a vision-capable chat model."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o", max_tokens: int = 500):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def classify(self, image_url: str, prompt: str = VISION_PROMPT) -> str:
        """Return the raw model reply, expected to contain a JSON object."""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": prompt},
                            {"type": "image_url", "image_url": {"url": image_url}},
                        ],
                    }
                ],
                max_tokens=self.max_tokens,
                temperature=0.1,
            )
        except openai.APIError as e:
            raise ClassifierTransportError(f"OpenAI vision request failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise ClassifierResponseError("No response from OpenAI Vision API")
        return content


class OpenAISpeechTranscriber:
    """Speech-to-text through the audio transcription endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str = "whisper-1", language: str = "en"):
        self.client = client
        self.model = model
        self.language = language

    async def transcribe(self, audio: bytes, filename: str = "audio.mp3") -> str:
        try:
            response = await self.client.audio.transcriptions.create(
                model=self.model,
                file=(filename, audio),
                language=self.language,
            )
        except openai.APIError as e:
            raise ClassifierTransportError(f"OpenAI transcription request failed: {e}") from e
        return (getattr(response, "text", None) or "").strip()
