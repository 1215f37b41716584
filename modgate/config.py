"""
Gateway configuration.

GatewayConfig is read once from the environment at process start and is
immutable afterwards. VerdictConfig centralizes the flag names, reasons and
default scores used when building verdicts.
"""
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from modgate.errors import ConfigurationError


class FailurePolicy(str, Enum):
    OPEN = "open"      # undeterminable content is accepted
    CLOSED = "closed"  # undeterminable content is rejected


class VerdictConfig:
    # --- Flags ---
    FLAGS = {
        "ANALYSIS_ERROR": "analysis_error",
        "FETCH_ERROR": "error",
        "FRAME_ERROR": "frame_analysis_error",
    }

    # --- Scores ---
    SCORES = {
        "DEGRADED_CONFIDENCE": 0.5,
        "EMPTY_CONFIDENCE": 1.0,
        "TEXT_SAFE_CONFIDENCE": 1.0,
        "VISION_DEFAULT_CONFIDENCE": 0.5,
    }

    # --- Reasons ---
    REASONS = {
        "NO_CONTENT": "No content to evaluate",
        "ALL_SAFE": "All content is safe",
        "TEXT_SAFE": "Content is safe",
        "TEXT_EMPTY": "No text to evaluate",
        "VIDEO_SAFE": "Video content is safe",
        "VIDEO_FAILED": "Video analysis failed",
        "VIDEO_EMPTY": "No frames or audio could be analyzed",
        "IMAGE_DEFAULT": "Image analyzed",
    }


def defaulting_suffix(policy: FailurePolicy) -> str:
    return "defaulting to safe" if policy == FailurePolicy.OPEN else "defaulting to unsafe"


SUPPORTED_PROVIDERS = ("openai",)


@dataclass(frozen=True)
class GatewayConfig:
    openai_api_key: str
    openai_api_url: str = "https://api.openai.com/v1"
    ai_provider: str = "openai"
    moderation_model: str = "text-moderation-latest"
    vision_model: str = "gpt-4o"
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    max_frames: int = 10
    frame_interval_seconds: float = 2.0
    image_max_dimension: int = 640
    max_concurrent_calls: int = 4
    fetch_timeout_seconds: float = 30.0
    ffmpeg_timeout_seconds: float = 60.0
    request_timeout_seconds: float = 180.0
    max_media_bytes: int = 100 * 1024 * 1024
    failure_policy: FailurePolicy = FailurePolicy.OPEN
    x_bearer_token: Optional[str] = None

    def __post_init__(self):
        if not self.openai_api_key:
            raise ConfigurationError("OPENAI_API_KEY is not set")
        if self.ai_provider not in SUPPORTED_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported AI provider: {self.ai_provider}. Supported: {', '.join(SUPPORTED_PROVIDERS)}"
            )
        if self.max_frames < 1:
            raise ConfigurationError("VIDEO_MAX_FRAMES must be at least 1")
        if self.frame_interval_seconds <= 0:
            raise ConfigurationError("VIDEO_FRAME_INTERVAL must be positive")
        if self.max_concurrent_calls < 1:
            raise ConfigurationError("MAX_CONCURRENT_CALLS must be at least 1")
        if self.image_max_dimension < 16:
            raise ConfigurationError("IMAGE_MAX_DIMENSION must be at least 16")

    @property
    def fail_open(self) -> bool:
        return self.failure_policy == FailurePolicy.OPEN

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "GatewayConfig":
        """Build the configuration from environment variables.

        Raises:
            ConfigurationError: if a required value is missing or malformed.
        """
        env = os.environ if environ is None else environ

        def _number(name: str, default, cast):
            raw = env.get(name)
            if raw is None or raw == "":
                return default
            try:
                return cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {name}: {raw!r}") from e

        policy_raw = env.get("FAILURE_POLICY", FailurePolicy.OPEN.value).strip().lower()
        try:
            policy = FailurePolicy(policy_raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for FAILURE_POLICY: {policy_raw!r}") from e

        return cls(
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            openai_api_url=env.get("OPENAI_API_URL", cls.openai_api_url),
            ai_provider=env.get("AI_PROVIDER", cls.ai_provider).strip().lower(),
            moderation_model=env.get("OPENAI_MODERATION_MODEL", cls.moderation_model),
            vision_model=env.get("OPENAI_VISION_MODEL", cls.vision_model),
            transcription_model=env.get("OPENAI_TRANSCRIPTION_MODEL", cls.transcription_model),
            transcription_language=env.get("TRANSCRIPTION_LANGUAGE", cls.transcription_language),
            max_frames=_number("VIDEO_MAX_FRAMES", cls.max_frames, int),
            frame_interval_seconds=_number("VIDEO_FRAME_INTERVAL", cls.frame_interval_seconds, float),
            image_max_dimension=_number("IMAGE_MAX_DIMENSION", cls.image_max_dimension, int),
            max_concurrent_calls=_number("MAX_CONCURRENT_CALLS", cls.max_concurrent_calls, int),
            fetch_timeout_seconds=_number("FETCH_TIMEOUT", cls.fetch_timeout_seconds, float),
            ffmpeg_timeout_seconds=_number("FFMPEG_TIMEOUT", cls.ffmpeg_timeout_seconds, float),
            request_timeout_seconds=_number("REQUEST_TIMEOUT", cls.request_timeout_seconds, float),
            max_media_bytes=_number("MAX_MEDIA_BYTES", cls.max_media_bytes, int),
            failure_policy=policy,
            x_bearer_token=env.get("X_BEARER_TOKEN") or None,
        )
