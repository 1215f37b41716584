import logging
from typing import List, Optional, Sequence

import numpy as np

from modgate.config import FailurePolicy, VerdictConfig, defaulting_suffix
from modgate.schemas import ItemVerdict, ModerationResult, VideoMetadata, VideoVerdict

logger = logging.getLogger(__name__)


def _mean_confidence(confidences: Sequence[float]) -> float:
    return float(np.clip(np.mean(confidences), 0.0, 1.0))


def _union_flags(verdicts) -> List[str]:
    flags = []
    for v in verdicts:
        flags.extend(v.flags)
    return list(dict.fromkeys(flags))


def degraded_verdict(
    stage: str,
    index: int = 0,
    policy: FailurePolicy = FailurePolicy.OPEN,
    flag: str = VerdictConfig.FLAGS["ANALYSIS_ERROR"],
) -> ItemVerdict:
    """Stand-in verdict for an item whose analysis failed."""
    return ItemVerdict(
        index=index,
        is_safe=policy == FailurePolicy.OPEN,
        reason=f"{stage} failed, {defaulting_suffix(policy)}",
        confidence=VerdictConfig.SCORES["DEGRADED_CONFIDENCE"],
        flags=[flag],
    )


def failed_video_verdict(
    index: int,
    policy: FailurePolicy = FailurePolicy.OPEN,
    flag: str = VerdictConfig.FLAGS["ANALYSIS_ERROR"],
) -> VideoVerdict:
    return VideoVerdict(
        index=index,
        is_safe=policy == FailurePolicy.OPEN,
        reason=f"{VerdictConfig.REASONS['VIDEO_FAILED']}, {defaulting_suffix(policy)}",
        confidence=VerdictConfig.SCORES["DEGRADED_CONFIDENCE"],
        flags=[flag],
        frame_verdicts=[],
        audio_transcript=None,
        audio_verdict=None,
        metadata=VideoMetadata(),
    )


def reduce_video(
    index: int,
    frame_verdicts: List[ItemVerdict],
    audio_transcript: Optional[str] = None,
    audio_verdict: Optional[ItemVerdict] = None,
    metadata: Optional[VideoMetadata] = None,
    policy: FailurePolicy = FailurePolicy.OPEN,
) -> VideoVerdict:
    """
    Fold frame verdicts and the audio verdict into one VideoVerdict.

    Safe only if every frame and the audio (when present) are safe. Confidence
    is the mean over all contributing verdicts.
    """
    metadata = metadata or VideoMetadata()
    contributing = list(frame_verdicts) + ([audio_verdict] if audio_verdict is not None else [])

    if not contributing:
        return VideoVerdict(
            index=index,
            is_safe=policy == FailurePolicy.OPEN,
            reason=f"{VerdictConfig.REASONS['VIDEO_EMPTY']}, {defaulting_suffix(policy)}",
            confidence=VerdictConfig.SCORES["DEGRADED_CONFIDENCE"],
            flags=[],
            audio_transcript=audio_transcript,
            metadata=metadata,
        )

    unsafe_frames = [v for v in frame_verdicts if not v.is_safe]
    audio_unsafe = audio_verdict is not None and not audio_verdict.is_safe

    reasons = []
    if unsafe_frames:
        reasons.append(f"{len(unsafe_frames)} unsafe frames detected")
    if audio_unsafe:
        reasons.append(f"Audio content: {audio_verdict.reason}")

    return VideoVerdict(
        index=index,
        is_safe=not unsafe_frames and not audio_unsafe,
        reason="; ".join(reasons) if reasons else VerdictConfig.REASONS["VIDEO_SAFE"],
        confidence=_mean_confidence([v.confidence for v in contributing]),
        flags=_union_flags(contributing),
        frame_verdicts=list(frame_verdicts),
        audio_transcript=audio_transcript,
        audio_verdict=audio_verdict,
        metadata=metadata,
    )


def combine(
    text_verdict: Optional[ItemVerdict] = None,
    image_verdicts: Optional[List[ItemVerdict]] = None,
    video_verdicts: Optional[List[VideoVerdict]] = None,
) -> ModerationResult:
    """
    Aggregate per-item verdicts into the request-level result.

    Any unsafe verdict vetoes the whole request. Text, each image and each
    video contribute one confidence each to the mean.
    """
    image_verdicts = list(image_verdicts or [])
    video_verdicts = list(video_verdicts or [])
    contributing = ([text_verdict] if text_verdict is not None else []) + image_verdicts + video_verdicts

    if not contributing:
        return ModerationResult(
            is_safe=True,
            reason=VerdictConfig.REASONS["NO_CONTENT"],
            confidence=VerdictConfig.SCORES["EMPTY_CONFIDENCE"],
            flags=[],
            text_verdict=text_verdict,
            image_verdicts=image_verdicts,
            video_verdicts=video_verdicts,
        )

    unsafe = [v for v in contributing if not v.is_safe]
    result = ModerationResult(
        is_safe=not unsafe,
        reason="; ".join(v.reason for v in unsafe) if unsafe else VerdictConfig.REASONS["ALL_SAFE"],
        confidence=_mean_confidence([v.confidence for v in contributing]),
        flags=_union_flags(contributing),
        text_verdict=text_verdict,
        image_verdicts=image_verdicts,
        video_verdicts=video_verdicts,
    )
    logger.info(
        f"[DECISION] Verdict: {'SAFE' if result.is_safe else 'UNSAFE'} ({result.confidence:.2f}) | "
        f"Items: {len(contributing)} | Flags: {result.flags}"
    )
    return result
