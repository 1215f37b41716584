import asyncio
import logging
import time
from typing import Optional, Sequence

import httpx

from modgate.config import GatewayConfig, VerdictConfig
from modgate.errors import FetchError
from modgate.moderation.aggregator import combine, degraded_verdict
from modgate.moderation.evaluators import ItemEvaluator
from modgate.moderation.media import MediaFetcher
from modgate.moderation.video_analyzer import VideoAnalyzer
from modgate.openai_client import (
    OpenAISpeechTranscriber,
    OpenAITextClassifier,
    OpenAIVisionClassifier,
    build_openai_client,
)
from modgate.schemas import ItemVerdict, MediaReference, ModerationResult, VideoReference

logger = logging.getLogger(__name__)


class ModerationService:
    """
    Entry point for moderating one request's text, images and videos.

    Holds only configuration and stateless delegates; the concurrency limiter
    is created per call, so one instance serves concurrent requests.
    """

    def __init__(
        self,
        config: GatewayConfig,
        evaluator: ItemEvaluator,
        video_analyzer: VideoAnalyzer,
        fetcher: MediaFetcher,
    ):
        self.config = config
        self.evaluator = evaluator
        self.video_analyzer = video_analyzer
        self.fetcher = fetcher

    async def moderate(
        self,
        text: str = "",
        images: Optional[Sequence[MediaReference]] = None,
        videos: Optional[Sequence[VideoReference]] = None,
    ) -> ModerationResult:
        images = list(images or [])
        videos = list(videos or [])
        t_start = time.perf_counter()
        limiter = asyncio.Semaphore(self.config.max_concurrent_calls)

        has_text = bool(text and text.strip())
        logger.info(f"[MODERATE] text={'yes' if has_text else 'no'} images={len(images)} videos={len(videos)}")

        text_task = self.evaluator.evaluate_text(text, limiter=limiter) if has_text else _none()
        results = await asyncio.gather(
            text_task,
            asyncio.gather(*(self._evaluate_image(ref, i, limiter) for i, ref in enumerate(images))),
            asyncio.gather(*(self.video_analyzer.analyze(ref, i, limiter) for i, ref in enumerate(videos))),
        )
        text_verdict, image_verdicts, video_verdicts = results

        result = combine(text_verdict, list(image_verdicts), list(video_verdicts))
        logger.info(f"[TIMING] Moderation completed in {(time.perf_counter() - t_start) * 1000:.0f}ms")
        return result

    async def _evaluate_image(self, ref: MediaReference, index: int, limiter) -> ItemVerdict:
        try:
            payload = self.fetcher.resolve_image(ref)
        except FetchError as e:
            logger.warning(f"[IMAGE] #{index} could not be resolved: {e}")
            return degraded_verdict(
                "Image analysis", index, self.config.failure_policy, VerdictConfig.FLAGS["FETCH_ERROR"]
            )
        except Exception as e:
            logger.error(f"[IMAGE] #{index} could not be resolved unexpectedly: {e}", exc_info=True)
            return degraded_verdict("Image analysis", index, self.config.failure_policy)
        return await self.evaluator.evaluate_image(payload, index=index, limiter=limiter)


async def _none():
    return None


def build_moderation_service(config: GatewayConfig, http_client: Optional[httpx.AsyncClient] = None) -> ModerationService:
    """Wire the OpenAI-backed classifiers. Called once at process start."""
    client = build_openai_client(config)
    evaluator = ItemEvaluator(
        text_classifier=OpenAITextClassifier(client, config.moderation_model),
        vision_classifier=OpenAIVisionClassifier(client, config.vision_model),
        policy=config.failure_policy,
    )
    fetcher = MediaFetcher(
        http_client=http_client,
        timeout=config.fetch_timeout_seconds,
        max_bytes=config.max_media_bytes,
        image_max_dimension=config.image_max_dimension,
    )
    transcriber = OpenAISpeechTranscriber(client, config.transcription_model, config.transcription_language)
    video_analyzer = VideoAnalyzer(fetcher, evaluator, transcriber, config)
    logger.info(
        f"[STARTUP] Moderation service ready: provider={config.ai_provider} "
        f"vision={config.vision_model} policy={config.failure_policy.value}"
    )
    return ModerationService(config, evaluator, video_analyzer, fetcher)
