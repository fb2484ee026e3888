"""
FFmpeg invocation for the vertical 1080x1920 re-encode.

A failed or timed-out encode is not a job failure: we fall back to a
stream-copy remux, and if that fails too, to the original file.
"""
import random
import shutil
import subprocess
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from django.conf import settings
from loguru import logger

TARGET_W, TARGET_H = 1080, 1920
# pixels trimmed on each edge before re-padding
MICRO_SHIFT = 2

MODE_ENCODED = "encoded"
MODE_REMUXED = "remuxed"
MODE_COPIED = "copied"

_slot_lock = threading.Lock()
_slot = None


@dataclass
class TranscodeResult:
    path: Path
    mode: str
    error: str = ""

    @property
    def degraded(self) -> bool:
        return self.mode != MODE_ENCODED


def _semaphore() -> threading.BoundedSemaphore:
    global _slot
    with _slot_lock:
        if _slot is None:
            _slot = threading.BoundedSemaphore(max(1, settings.TRANSCODE_CONCURRENCY))
        return _slot


@contextmanager
def transcode_slot():
    """Bound concurrent encodes in this worker process to TRANSCODE_CONCURRENCY."""
    sem = _semaphore()
    sem.acquire()
    try:
        yield
    finally:
        sem.release()


def build_filter_graph(jitter: bool = False, rng: random.Random | None = None) -> str:
    w, h, s = TARGET_W, TARGET_H, MICRO_SHIFT
    filters = [
        f"scale=w={w}:h={h}:force_original_aspect_ratio=decrease",
        f"pad={w}:{h}:({w}-iw)/2:({h}-ih)/2",
        f"crop={w}-{2 * s}:{h}-{2 * s}:{s}:{s}",
        f"pad={w}:{h}:({w}-iw)/2:({h}-ih)/2",
    ]
    if jitter:
        rng = rng or random.Random()
        hue = rng.choice([-2, -1, 1, 2])
        noise = rng.randint(1, 3)
        filters.append(f"hue=h={hue}")
        filters.append(f"noise=alls={noise}:allf=t")
    return ",".join(filters)


def build_transcode_cmd(in_path, out_path, *, jitter: bool | None = None) -> list[str]:
    if jitter is None:
        jitter = settings.TRANSCODE_JITTER
    if settings.TRANSCODE_AUDIO == "aac":
        audio = ["-c:a", "aac", "-b:a", "128k"]
    else:
        audio = ["-c:a", "copy"]
    return [
        settings.FFMPEG_BIN,
        "-y", "-hide_banner", "-nostdin",
        "-threads", "1", "-filter_threads", "1",
        "-i", str(in_path),
        "-vf", build_filter_graph(jitter),
        "-r", "30",
        "-map", "0:v:0", "-map", "0:a:0?",
        "-c:v", "libx264", "-pix_fmt", "yuv420p",
        "-preset", settings.TRANSCODE_PRESET,
        "-crf", str(settings.TRANSCODE_CRF),
        *audio,
        "-movflags", "+faststart",
        str(out_path),
    ]


def build_remux_cmd(in_path, out_path) -> list[str]:
    return [
        settings.FFMPEG_BIN,
        "-y", "-hide_banner", "-nostdin",
        "-i", str(in_path),
        "-map", "0",
        "-c", "copy",
        "-movflags", "+faststart",
        str(out_path),
    ]


def _run(cmd: list[str], timeout: int) -> None:
    subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=timeout)


def _describe(exc: Exception) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        err = exc.stderr.decode("utf-8", errors="ignore") if exc.stderr else str(exc)
        return err[-2000:]
    if isinstance(exc, subprocess.TimeoutExpired):
        return f"timed out after {exc.timeout}s"
    return str(exc)


def transcode(in_path) -> TranscodeResult:
    """Re-encode in_path next to itself. Never raises for encoder failures."""
    in_path = Path(in_path)
    out_path = in_path.with_name(f"out_{uuid4().hex[:12]}.mp4")

    try:
        with transcode_slot():
            _run(build_transcode_cmd(in_path, out_path), settings.TRANSCODE_TIMEOUT_SECONDS)
        return TranscodeResult(out_path, MODE_ENCODED)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        encode_err = _describe(e)
        logger.warning("[FFMPEG] encode failed, trying remux: {}", encode_err)

    remux_path = in_path.with_name(f"remux_{uuid4().hex[:12]}.mp4")
    try:
        _run(build_remux_cmd(in_path, remux_path), settings.TRANSCODE_REMUX_TIMEOUT_SECONDS)
        return TranscodeResult(remux_path, MODE_REMUXED, encode_err)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
        logger.warning("[FFMPEG] remux failed, using original: {}", _describe(e))

    copy_path = in_path.with_name(f"copy_{uuid4().hex[:12]}.mp4")
    shutil.copyfile(in_path, copy_path)
    return TranscodeResult(copy_path, MODE_COPIED, encode_err)
