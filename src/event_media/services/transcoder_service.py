"""FFmpeg compression of uploaded event videos.

A single fixed profile: H.264/AAC in an MP4 with fast-start, CRF quality capped at the
target bitrate, frame rate capped and dimensions bounded (scaled down only).
"""

import asyncio
import json
import logging
import os
from collections import deque
from typing import Callable, List, Optional

from event_media.common.exceptions import EncodeFailedError
from event_media.configurations.media_policy import (
    AUDIO_CODEC,
    CONTAINER_FORMAT,
    CRF,
    MAX_FPS,
    MAX_HEIGHT,
    MAX_WIDTH,
    PRESET,
    VIDEO_BITRATE,
    VIDEO_CODEC,
)

logger = logging.getLogger(__name__)

ProgressObserver = Callable[[int], None]

PROBE_TIMEOUT_SECONDS = 30
STDERR_TAIL_LINES = 20


def build_scale_filter() -> str:
    # Bound both sides, keep aspect ratio, never upscale, keep even sizes for yuv420p
    return (
        f"scale='min({MAX_WIDTH},iw)':'min({MAX_HEIGHT},ih)'"
        ":force_original_aspect_ratio=decrease:force_divisible_by=2"
    )


def _bitrate_to_bufsize(bitrate: str) -> str:
    value, unit = bitrate[:-1], bitrate[-1]
    if unit.isdigit():
        return str(int(bitrate) * 2)
    return f"{int(value) * 2}{unit}"


def parse_progress_line(line: str, duration_seconds: float) -> Optional[int]:
    """
    Turn one line of ``-progress`` output into a percentage.

    Both ``out_time_us`` and the misnamed ``out_time_ms`` carry microseconds.
    Returns None for lines without a usable timestamp.
    """
    if duration_seconds <= 0:
        return None

    key, _, value = line.strip().partition("=")
    if key not in ("out_time_us", "out_time_ms"):
        return None

    try:
        current_seconds = int(value) / 1_000_000
    except ValueError:
        return None

    if current_seconds < 0:
        return None
    return min(100, int(current_seconds / duration_seconds * 100))


class FFmpegTranscoder:
    """Runs ffmpeg/ffprobe as subprocesses. Cancelling ``transcode`` kills the encoder."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe"):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    def build_command(self, input_path: str, output_path: str) -> List[str]:
        return [
            self.ffmpeg_path,
            "-y",
            "-hide_banner",
            "-nostats",
            "-i",
            input_path,
            "-c:v",
            VIDEO_CODEC,
            "-preset",
            PRESET,
            "-crf",
            str(CRF),
            "-maxrate",
            VIDEO_BITRATE,
            "-bufsize",
            _bitrate_to_bufsize(VIDEO_BITRATE),
            "-fpsmax",
            str(MAX_FPS),
            "-vf",
            build_scale_filter(),
            "-pix_fmt",
            "yuv420p",
            "-c:a",
            AUDIO_CODEC,
            "-movflags",
            "+faststart",
            "-f",
            CONTAINER_FORMAT,
            "-progress",
            "pipe:1",
            output_path,
        ]

    async def probe_duration(self, input_path: str) -> float:
        """Duration in seconds, 0.0 when it cannot be determined (progress is then skipped)."""
        cmd = [
            self.ffprobe_path,
            "-v",
            "quiet",
            "-print_format",
            "json",
            "-show_format",
            input_path,
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.warning(f"ffprobe could not be started: {e}")
            return 0.0

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=PROBE_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"ffprobe timed out after {PROBE_TIMEOUT_SECONDS}s")
            return 0.0

        if process.returncode != 0:
            return 0.0

        try:
            data = json.loads(stdout.decode("utf-8", errors="ignore"))
            return float(data.get("format", {}).get("duration") or 0.0)
        except (ValueError, TypeError):
            return 0.0

    async def transcode(
        self,
        input_path: str,
        output_path: str,
        on_progress: Optional[ProgressObserver] = None,
    ) -> int:
        """
        Compress ``input_path`` into ``output_path``.

        Args:
            input_path: Local path of the downloaded original
            output_path: Local path the encoder writes to
            on_progress: Called with whole percentages (0-100) as they increase

        Returns:
            Size of the output file in bytes

        Raises:
            EncodeFailedError: If the encoder cannot start, exits non-zero, or writes nothing
        """
        duration = await self.probe_duration(input_path)
        cmd = self.build_command(input_path, output_path)
        logger.info(f"FFmpeg started: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeFailedError(f"FFmpeg could not be started: {e}") from e

        stderr_tail = deque(maxlen=STDERR_TAIL_LINES)
        last_progress = -1

        async def read_progress():
            nonlocal last_progress
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                progress = parse_progress_line(
                    line.decode("utf-8", errors="ignore"), duration
                )
                if progress is not None and progress > last_progress:
                    last_progress = progress
                    logger.info(f"Compression progress: {progress}%")
                    if on_progress:
                        on_progress(progress)

        async def read_stderr():
            # Drained continuously, a full pipe blocks ffmpeg
            while True:
                line = await process.stderr.readline()
                if not line:
                    break
                stderr_tail.append(line.decode("utf-8", errors="ignore").rstrip())

        try:
            await asyncio.gather(read_progress(), read_stderr())
            await process.wait()
        finally:
            if process.returncode is None:
                logger.warning("Killing FFmpeg process")
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if process.returncode != 0:
            error_output = "\n".join(stderr_tail)
            logger.error(f"FFmpeg error (exit {process.returncode}): {error_output}")
            raise EncodeFailedError(
                f"FFmpeg exited with code {process.returncode}: {error_output}",
                return_code=process.returncode,
            )

        if not os.path.exists(output_path):
            raise EncodeFailedError(f"FFmpeg produced no output at {output_path}")

        if on_progress and last_progress < 100:
            on_progress(100)

        logger.info("FFmpeg compression completed")
        return os.path.getsize(output_path)
