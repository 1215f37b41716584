import asyncio
import base64
import io
import json

import cv2
import numpy as np
import pytest
from PIL import Image

from modgate.config import GatewayConfig
from modgate.openai_client import TextClassification

SAFE_VISION_REPLY = json.dumps({"isSafe": True, "reason": "Nothing concerning", "confidence": 0.9, "flags": []})


def vision_reply(is_safe=True, confidence=0.9, flags=(), reason="Analyzed"):
    return json.dumps({"isSafe": is_safe, "reason": reason, "confidence": confidence, "flags": list(flags)})


class FakeTextClassifier:
    """Returns a fixed classification; records every call."""

    def __init__(self, flagged=(), scores=None, error=None, delay=0.0):
        self.flagged = set(flagged)
        self.scores = dict(scores or {})
        self.error = error
        self.delay = delay
        self.calls = []

    async def classify(self, text):
        self.calls.append(text)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TextClassification(flagged_categories=set(self.flagged), category_scores=dict(self.scores))


class FakeVisionClassifier:
    """
    Replies with `reply` unless a per-url override exists in `replies`.
    Tracks the highest number of concurrent calls.
    """

    def __init__(self, reply=SAFE_VISION_REPLY, replies=None, error=None, delay=0.0):
        self.reply = reply
        self.replies = dict(replies or {})
        self.error = error
        self.delay = delay
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def classify(self, image_url, prompt=None):
        self.calls.append(image_url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            override = self.replies.get(image_url)
            if isinstance(override, BaseException):
                raise override
            if self.error is not None:
                raise self.error
            return override if override is not None else self.reply
        finally:
            self.in_flight -= 1


class FakeTranscriber:
    def __init__(self, transcript="", error=None):
        self.transcript = transcript
        self.error = error
        self.calls = []

    async def transcribe(self, audio, filename="audio.mp3"):
        self.calls.append((filename, audio))
        if self.error is not None:
            raise self.error
        return self.transcript


@pytest.fixture
def config():
    return GatewayConfig(openai_api_key="sk-test")


@pytest.fixture
def png_bytes():
    buf = io.BytesIO()
    Image.new("RGB", (32, 24), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def png_base64(png_bytes):
    return base64.b64encode(png_bytes).decode("ascii")


@pytest.fixture
def sample_video(tmp_path):
    """10 second MJPG clip: 50 frames at 5 fps, 64x64."""
    path = str(tmp_path / "sample.avi")
    writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), 5.0, (64, 64))
    for i in range(50):
        frame = np.full((64, 64, 3), (i * 5) % 255, dtype=np.uint8)
        writer.write(frame)
    writer.release()
    return path


@pytest.fixture
def sample_video_base64(sample_video):
    with open(sample_video, "rb") as f:
        return base64.b64encode(f.read()).decode("ascii")


@pytest.fixture
def work_dir(tmp_path, monkeypatch):
    """Redirect temporary files so tests can assert nothing is left behind."""
    import tempfile

    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(work))
    return work
