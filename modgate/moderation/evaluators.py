import asyncio
import logging
import time
from typing import Optional, Protocol

from modgate.config import FailurePolicy, VerdictConfig
from modgate.errors import ClassifierError
from modgate.moderation.aggregator import degraded_verdict
from modgate.moderation.media import ImagePayload, limited
from modgate.moderation.parsing import parse_vision_reply
from modgate.openai_client import VISION_PROMPT, TextClassification
from modgate.schemas import ItemVerdict

logger = logging.getLogger(__name__)


class TextClassifier(Protocol):
    async def classify(self, text: str) -> TextClassification:
        ...


class VisionClassifier(Protocol):
    async def classify(self, image_url: str, prompt: str = VISION_PROMPT) -> str:
        ...


def text_verdict_from_classification(classification: TextClassification, index: int = 0) -> ItemVerdict:
    """
    Flagged text: confidence is the highest score among flagged categories.
    Clean text: full confidence, whatever the individual category scores.
    """
    flagged = sorted(classification.flagged_categories)
    scores = classification.category_scores

    if flagged:
        confidence = max((scores.get(name, 0.0) for name in flagged), default=0.0)
        reason = f"Content flagged for: {', '.join(flagged)}"
    else:
        confidence = VerdictConfig.SCORES["TEXT_SAFE_CONFIDENCE"]
        reason = VerdictConfig.REASONS["TEXT_SAFE"]

    return ItemVerdict(
        index=index,
        is_safe=not flagged,
        reason=reason,
        confidence=max(0.0, min(1.0, confidence)),
        flags=flagged,
    )


class ItemEvaluator:
    """Turns a single text or image into an ItemVerdict. Classifier failures degrade, never raise."""

    def __init__(
        self,
        text_classifier: TextClassifier,
        vision_classifier: VisionClassifier,
        policy: FailurePolicy = FailurePolicy.OPEN,
    ):
        self.text_classifier = text_classifier
        self.vision_classifier = vision_classifier
        self.policy = policy

    async def evaluate_text(
        self,
        text: str,
        index: int = 0,
        stage: str = "Text analysis",
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> ItemVerdict:
        if not text or not text.strip():
            return ItemVerdict(
                index=index,
                is_safe=True,
                reason=VerdictConfig.REASONS["TEXT_EMPTY"],
                confidence=VerdictConfig.SCORES["EMPTY_CONFIDENCE"],
                flags=[],
            )

        t_start = time.perf_counter()
        try:
            async with limited(limiter):
                classification = await self.text_classifier.classify(text)
        except ClassifierError as e:
            logger.warning(f"[TEXT] {stage} failed: {e}")
            return degraded_verdict(stage, index, self.policy)
        except Exception as e:
            logger.error(f"[TEXT] {stage} failed unexpectedly: {e}", exc_info=True)
            return degraded_verdict(stage, index, self.policy)

        verdict = text_verdict_from_classification(classification, index)
        logger.info(
            f"[TEXT] {stage}: {'safe' if verdict.is_safe else 'unsafe'} ({verdict.confidence:.2f}) "
            f"in {(time.perf_counter() - t_start) * 1000:.0f}ms"
        )
        return verdict

    async def evaluate_image(
        self,
        image: ImagePayload,
        index: int = 0,
        stage: str = "Image analysis",
        limiter: Optional[asyncio.Semaphore] = None,
    ) -> ItemVerdict:
        t_start = time.perf_counter()
        try:
            async with limited(limiter):
                reply = await self.vision_classifier.classify(image.to_image_url(), VISION_PROMPT)
            analysis = parse_vision_reply(reply)
        except ClassifierError as e:
            logger.warning(f"[IMAGE] {stage} failed: {e}")
            return degraded_verdict(stage, index, self.policy)
        except Exception as e:
            logger.error(f"[IMAGE] {stage} failed unexpectedly: {e}", exc_info=True)
            return degraded_verdict(stage, index, self.policy)

        confidence = analysis.confidence
        if confidence is None:
            confidence = VerdictConfig.SCORES["VISION_DEFAULT_CONFIDENCE"]

        logger.info(
            f"[IMAGE] {stage}: {'safe' if analysis.is_safe else 'unsafe'} ({confidence:.2f}) "
            f"in {(time.perf_counter() - t_start) * 1000:.0f}ms"
        )
        return ItemVerdict(
            index=index,
            is_safe=analysis.is_safe,
            reason=analysis.reason or VerdictConfig.REASONS["IMAGE_DEFAULT"],
            confidence=confidence,
            flags=analysis.flags,
            detected_objects=analysis.detected_objects,
            adult_content=analysis.adult_content,
            violence=analysis.violence,
            hate=analysis.hate,
        )
