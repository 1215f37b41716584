
import asyncio
import contextlib
import json
import logging
import math
import os
import tempfile
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import cv2
from PIL import Image

from modgate.errors import ExtractionError
from modgate.moderation.media import ImagePayload, limited, optimize_image, remove_temp_file
from modgate.schemas import VideoMetadata, VideoReference

logger = logging.getLogger(__name__)

AUDIO_SAMPLE_RATE = 16000


@dataclass
class ExtractedFrame:
    """One sampled still. Exactly one of image/error is set."""
    index: int
    timestamp: float
    image: Optional[ImagePayload] = None
    error: Optional[str] = None


def _safe_float(val) -> float:
    try:
        return float(val)
    except (TypeError, ValueError):
        return 0.0


def _parse_rate(rate) -> float:
    """Parse ffprobe rates such as '30000/1001'."""
    if not rate:
        return 0.0
    rate = str(rate)
    if "/" in rate:
        num, den = rate.split("/", 1)
        den_f = _safe_float(den)
        return _safe_float(num) / den_f if den_f > 0 else 0.0
    return _safe_float(rate)


# ---- Frame extraction ----

def plan_frame_timestamps(duration: float, max_frames: int = 10, interval_seconds: float = 2.0) -> List[float]:
    """
    Evenly spaced sample points starting at t=0:
    min(ceil(duration / interval), max_frames) of them.
    An unknown duration yields a single sample at t=0.
    """
    if duration <= 0:
        return [0.0]
    count = min(math.ceil(duration / interval_seconds), max_frames)
    return [i * interval_seconds for i in range(count)]


def _extract_frames_sync(video_path: str, max_frames: int, interval_seconds: float, max_dimension: int) -> List[ExtractedFrame]:
    """
    Synchronous frame extraction (runs in thread pool).
    Each frame is re-encoded to JPEG in memory right away.
    """
    cap = cv2.VideoCapture(video_path)
    try:
        if not cap.isOpened():
            raise ExtractionError(f"Could not open video {video_path}")

        fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
        total_frames = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
        duration = total_frames / fps if fps > 0 and total_frames > 0 else 0.0
        timestamps = plan_frame_timestamps(duration, max_frames, interval_seconds)

        frames = []
        for i, ts in enumerate(timestamps):
            try:
                if fps > 0 and total_frames > 0:
                    cap.set(cv2.CAP_PROP_POS_FRAMES, min(int(round(ts * fps)), int(total_frames) - 1))
                ret, frame = cap.read()
                if not ret or frame is None:
                    raise ExtractionError(f"No frame decoded at {ts:.1f}s")
                frame_rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
                jpeg, _, _ = optimize_image(Image.fromarray(frame_rgb), max_size=max_dimension)
                frames.append(ExtractedFrame(index=i, timestamp=ts, image=ImagePayload(data=jpeg, mime="image/jpeg")))
            except (ExtractionError, cv2.error, OSError, ValueError) as e:
                logger.warning(f"[FRAMES] Frame {i} at {ts:.1f}s failed: {e}")
                frames.append(ExtractedFrame(index=i, timestamp=ts, error=str(e)))
        return frames
    finally:
        cap.release()


async def extract_frames(
    video_path: str,
    max_frames: int = 10,
    interval_seconds: float = 2.0,
    max_dimension: int = 640,
) -> List[ExtractedFrame]:
    """
    Async wrapper for frame extraction (runs in thread pool to avoid blocking).
    Raises ExtractionError if the video cannot be opened at all.
    """
    t_start = time.perf_counter()
    loop = asyncio.get_running_loop()
    frames = await loop.run_in_executor(
        None, _extract_frames_sync, video_path, max_frames, interval_seconds, max_dimension
    )
    failed = sum(1 for f in frames if f.image is None)
    extract_time_ms = (time.perf_counter() - t_start) * 1000
    logger.info(f"[FRAMES] Extracted {len(frames) - failed}/{len(frames)} frames in {extract_time_ms:.0f}ms")
    return frames


# ---- ffmpeg / ffprobe ----

async def run_media_tool(args: List[str], timeout: float) -> bytes:
    """Run ffmpeg/ffprobe and return stdout. Any failure is an ExtractionError."""
    tool = args[0]
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ExtractionError(f"{tool} not installed") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as e:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        await proc.wait()
        raise ExtractionError(f"{tool} timed out after {timeout}s") from e
    except asyncio.CancelledError:
        with contextlib.suppress(ProcessLookupError):
            proc.kill()
        with contextlib.suppress(asyncio.CancelledError, ProcessLookupError):
            await proc.wait()
        raise

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="ignore").strip()[-300:]
        raise ExtractionError(f"{tool} exited with code {proc.returncode}: {detail}")
    return stdout


# ---- Audio ----

@asynccontextmanager
async def extracted_audio(video_path: str, timeout: float = 60.0) -> AsyncIterator[str]:
    """Mono 16 kHz MP3 track of the video in a temporary file, removed on exit."""
    with tempfile.NamedTemporaryFile(delete=False, prefix="modgate_audio_", suffix=".mp3") as tmp_file:
        audio_path = tmp_file.name
    try:
        await run_media_tool(
            [
                "ffmpeg", "-y", "-v", "error",
                "-i", video_path,
                "-vn", "-ac", "1", "-ar", str(AUDIO_SAMPLE_RATE),
                "-acodec", "libmp3lame",
                audio_path,
            ],
            timeout,
        )
        if os.path.getsize(audio_path) == 0:
            raise ExtractionError("Extracted audio track is empty")
        yield audio_path
    finally:
        remove_temp_file(audio_path)


async def extract_and_transcribe(
    video_path: str,
    transcriber,
    timeout: float = 60.0,
    limiter: Optional[asyncio.Semaphore] = None,
) -> Optional[str]:
    """
    Transcript of the video's audio track, or None.
    Never raises: missing audio, ffmpeg failures and transcription errors all map to None.
    """
    try:
        async with extracted_audio(video_path, timeout) as audio_path:
            with open(audio_path, "rb") as f:
                audio = f.read()
            logger.info(f"[AUDIO] Extracted {len(audio)} bytes, transcribing")
            async with limited(limiter):
                transcript = await transcriber.transcribe(audio, filename=os.path.basename(audio_path))
    except Exception as e:
        logger.warning(f"[AUDIO] No transcript for {os.path.basename(video_path)}: {e}")
        return None

    transcript = (transcript or "").strip()
    return transcript or None


# ---- Metadata ----

async def get_video_metadata(video_path: str, timeout: float = 10.0) -> dict:
    """Raw ffprobe output, or {} if probing fails."""
    try:
        stdout = await run_media_tool(
            ["ffprobe", "-v", "quiet", "-print_format", "json", "-show_format", "-show_streams", video_path],
            timeout,
        )
        return json.loads(stdout.decode("utf-8"))
    except (ExtractionError, ValueError) as e:
        logger.warning(f"[PROBE] Error extracting video metadata: {e}")
        return {}


def parse_video_metadata(metadata: dict, file_size: int = 0) -> VideoMetadata:
    if not metadata:
        return VideoMetadata(size_bytes=file_size)

    format_info = metadata.get("format", {}) or {}
    streams = metadata.get("streams", []) or []
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None) or {}

    duration = _safe_float(format_info.get("duration")) or _safe_float(video_stream.get("duration"))
    size = int(_safe_float(format_info.get("size"))) or file_size

    width = video_stream.get("width") or 0
    height = video_stream.get("height") or 0
    resolution = f"{width}x{height}" if width and height else "unknown"

    nb_frames = str(video_stream.get("nb_frames", ""))
    if nb_frames.isdigit():
        frame_count = int(nb_frames)
    else:
        frame_count = int(round(duration * _parse_rate(video_stream.get("avg_frame_rate"))))

    return VideoMetadata(
        duration_seconds=round(duration, 3),
        frame_count=frame_count,
        resolution=resolution,
        size_bytes=size,
    )


def apply_metadata_hints(metadata: VideoMetadata, ref: VideoReference) -> VideoMetadata:
    """Fill fields the probe could not determine from the caller's hints."""
    updates = {}
    if metadata.duration_seconds <= 0 and ref.duration:
        updates["duration_seconds"] = float(ref.duration)
    if metadata.resolution == "unknown" and ref.resolution:
        updates["resolution"] = f"{ref.resolution.width}x{ref.resolution.height}"
    if metadata.size_bytes <= 0 and ref.size:
        updates["size_bytes"] = ref.size
    if metadata.frame_count <= 0 and ref.frame_rate:
        duration = updates.get("duration_seconds", metadata.duration_seconds)
        updates["frame_count"] = int(round(duration * ref.frame_rate))
    return metadata.model_copy(update=updates) if updates else metadata


async def probe_video(video_path: str, timeout: float = 10.0) -> VideoMetadata:
    """Duration, frame count, resolution and size. Degrades to zeros / 'unknown', never raises."""
    try:
        file_size = os.path.getsize(video_path)
    except OSError:
        file_size = 0
    return parse_video_metadata(await get_video_metadata(video_path, timeout), file_size)
