"""
Video pipeline: fetch once, then sample frames and transcribe audio
concurrently against the same temporary file, probe metadata, and reduce
everything to a single VideoVerdict.
"""
import asyncio
import logging
import time
from enum import Enum
from typing import List, Optional, Tuple

from modgate.config import GatewayConfig, VerdictConfig
from modgate.errors import ExtractionError, FetchError
from modgate.moderation.aggregator import degraded_verdict, failed_video_verdict, reduce_video
from modgate.moderation.evaluators import ItemEvaluator
from modgate.moderation.media import DEFAULT_VIDEO_MIME, MediaFetcher
from modgate.moderation.video import (
    ExtractedFrame,
    apply_metadata_hints,
    extract_and_transcribe,
    extract_frames,
    probe_video,
)
from modgate.schemas import ItemVerdict, VideoReference, VideoVerdict

logger = logging.getLogger(__name__)


class VideoStage(str, Enum):
    FETCHED = "fetched"
    FRAMES_EXTRACTED = "frames_extracted"
    FRAMES_EVALUATED = "frames_evaluated"
    AUDIO_EXTRACTED = "audio_extracted"
    AUDIO_TRANSCRIBED = "audio_transcribed"
    AUDIO_EVALUATED = "audio_evaluated"
    METADATA_PROBED = "metadata_probed"
    REDUCED = "reduced"
    DONE = "done"
    FAILED_DEFAULT_SAFE = "failed_default_safe"


class VideoAnalyzer:
    def __init__(self, fetcher: MediaFetcher, evaluator: ItemEvaluator, transcriber, config: GatewayConfig):
        self.fetcher = fetcher
        self.evaluator = evaluator
        self.transcriber = transcriber
        self.config = config

    def _advance(self, index: int, stage: VideoStage, detail: str = "") -> None:
        logger.info(f"[VIDEO] #{index} -> {stage.value}{f' ({detail})' if detail else ''}")

    async def analyze(
        self,
        ref: VideoReference,
        index: int = 0,
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> VideoVerdict:
        """Never raises except on cancellation; failures become a default verdict."""
        t_start = time.perf_counter()
        try:
            async with self.fetcher.fetch(ref, default_mime=DEFAULT_VIDEO_MIME, limiter=limiter) as media:
                self._advance(index, VideoStage.FETCHED, f"{media.size_bytes} bytes")

                # Both branches must finish before the file is released
                results = await asyncio.gather(
                    self._frame_branch(media.path, index, limiter),
                    self._audio_branch(media.path, index, limiter),
                    return_exceptions=True,
                )
                for outcome in results:
                    if isinstance(outcome, BaseException):
                        raise outcome
                frame_verdicts, (transcript, audio_verdict) = results

                metadata = apply_metadata_hints(
                    await probe_video(media.path, self.config.ffmpeg_timeout_seconds), ref
                )
                self._advance(index, VideoStage.METADATA_PROBED, f"{metadata.duration_seconds:.1f}s {metadata.resolution}")

            verdict = reduce_video(
                index,
                frame_verdicts,
                audio_transcript=transcript,
                audio_verdict=audio_verdict,
                metadata=metadata,
                policy=self.config.failure_policy,
            )
            self._advance(index, VideoStage.REDUCED, "safe" if verdict.is_safe else "unsafe")
            self._advance(index, VideoStage.DONE, f"{(time.perf_counter() - t_start) * 1000:.0f}ms")
            return verdict

        except FetchError as e:
            logger.warning(f"[VIDEO] #{index} fetch failed: {e}")
            self._advance(index, VideoStage.FAILED_DEFAULT_SAFE)
            return failed_video_verdict(index, self.config.failure_policy, VerdictConfig.FLAGS["FETCH_ERROR"])
        except Exception as e:
            logger.error(f"[VIDEO] #{index} analysis failed: {e}", exc_info=True)
            self._advance(index, VideoStage.FAILED_DEFAULT_SAFE)
            return failed_video_verdict(index, self.config.failure_policy, VerdictConfig.FLAGS["ANALYSIS_ERROR"])

    async def _frame_branch(self, path: str, index: int, limiter) -> List[ItemVerdict]:
        try:
            frames = await extract_frames(
                path,
                max_frames=self.config.max_frames,
                interval_seconds=self.config.frame_interval_seconds,
                max_dimension=self.config.image_max_dimension,
            )
        except ExtractionError as e:
            logger.warning(f"[VIDEO] #{index} no frames: {e}")
            frames = []
        self._advance(index, VideoStage.FRAMES_EXTRACTED, f"{len(frames)} frames")

        verdicts = await asyncio.gather(*(self._evaluate_frame(frame, limiter) for frame in frames))
        self._advance(index, VideoStage.FRAMES_EVALUATED)
        return list(verdicts)

    async def _evaluate_frame(self, frame: ExtractedFrame, limiter) -> ItemVerdict:
        if frame.image is None:
            return degraded_verdict(
                "Frame extraction", frame.index, self.config.failure_policy, VerdictConfig.FLAGS["FRAME_ERROR"]
            )
        return await self.evaluator.evaluate_image(
            frame.image, index=frame.index, stage=f"Frame {frame.index} analysis", limiter=limiter
        )

    async def _audio_branch(self, path: str, index: int, limiter) -> Tuple[Optional[str], Optional[ItemVerdict]]:
        transcript = await extract_and_transcribe(
            path, self.transcriber, timeout=self.config.ffmpeg_timeout_seconds, limiter=limiter
        )
        self._advance(index, VideoStage.AUDIO_EXTRACTED)
        self._advance(index, VideoStage.AUDIO_TRANSCRIBED, f"{len(transcript)} chars" if transcript else "no speech")
        if not transcript:
            return None, None

        audio_verdict = await self.evaluator.evaluate_text(transcript, stage="Audio analysis", limiter=limiter)
        self._advance(index, VideoStage.AUDIO_EVALUATED)
        return transcript, audio_verdict
