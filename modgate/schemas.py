from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


# ---- Media references ----

class MediaReference(BaseModel):
    url: Optional[str] = None
    base64: Optional[str] = None
    content_type: Optional[str] = None  # mime hint
    filename: Optional[str] = None

    @model_validator(mode="after")
    def _exactly_one_source(self):
        if bool(self.url) == bool(self.base64):
            raise ValueError("exactly one of 'url' or 'base64' must be provided")
        return self


class Resolution(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class VideoReference(MediaReference):
    # Caller-supplied hints, used only when probing the file yields nothing
    duration: Optional[float] = Field(default=None, ge=0)
    frame_rate: Optional[float] = Field(default=None, ge=0)
    resolution: Optional[Resolution] = None
    size: Optional[int] = Field(default=None, ge=0)


# ---- Verdicts ----

class ItemVerdict(BaseModel):
    index: int = 0
    is_safe: bool
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    flags: List[str] = []
    # Optional image-only details
    detected_objects: Optional[List[str]] = None
    adult_content: Optional[bool] = None
    violence: Optional[bool] = None
    hate: Optional[bool] = None

    @field_validator("flags")
    @classmethod
    def _dedupe_flags(cls, flags: List[str]) -> List[str]:
        return list(dict.fromkeys(flags))


class VideoMetadata(BaseModel):
    duration_seconds: float = 0.0
    frame_count: int = 0
    resolution: str = "unknown"
    size_bytes: int = 0


class VideoVerdict(BaseModel):
    index: int
    is_safe: bool
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    flags: List[str] = []
    frame_verdicts: List[ItemVerdict] = []
    audio_transcript: Optional[str] = None
    audio_verdict: Optional[ItemVerdict] = None
    metadata: VideoMetadata = VideoMetadata()

    @field_validator("flags")
    @classmethod
    def _dedupe_flags(cls, flags: List[str]) -> List[str]:
        return list(dict.fromkeys(flags))


class ModerationResult(BaseModel):
    is_safe: bool
    reason: str
    confidence: float = Field(ge=0.0, le=1.0)
    flags: List[str] = []
    text_verdict: Optional[ItemVerdict] = None
    image_verdicts: List[ItemVerdict] = []
    video_verdicts: List[VideoVerdict] = []


# ---- HTTP layer ----

class ModerateRequest(BaseModel):
    text: str = Field(default="", max_length=10000)
    images: List[MediaReference] = Field(default=[], max_length=4)
    videos: List[VideoReference] = Field(default=[], max_length=4)


class ModerateResponse(BaseModel):
    result: Literal["ok", "rejected"]
    reason: Optional[str] = None
    confidence: Optional[float] = None
    flags: List[str] = []
    text_result: Optional[ItemVerdict] = None
    image_results: List[ItemVerdict] = []
    video_results: List[VideoVerdict] = []

    @classmethod
    def from_result(cls, result: ModerationResult) -> "ModerateResponse":
        return cls(
            result="ok" if result.is_safe else "rejected",
            reason=result.reason,
            confidence=result.confidence,
            flags=result.flags,
            text_result=result.text_verdict,
            image_results=result.image_verdicts,
            video_results=result.video_verdicts,
        )


class XPostRequest(BaseModel):
    text: str = Field(min_length=1, max_length=280)
    images: List[MediaReference] = Field(default=[], max_length=4)
    reply_to: Optional[str] = None
    quote_tweet: Optional[str] = None


class XPostResponse(BaseModel):
    success: bool
    post_id: Optional[str] = None
    moderation_result: ModerateResponse
    error: Optional[str] = None
