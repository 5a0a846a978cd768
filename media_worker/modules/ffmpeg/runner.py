"""Async execution of the external encoder.

The encoder is started with ``-progress pipe:1`` so it reports the amount of
media processed so far on stdout. ``FFmpegRunner.run`` is an async generator
yielding percentages as those lines arrive, which lets a caller update job
progress while a long encode is still running. Each call spawns its own
process, so the sequence restarts per call.
"""

import asyncio
import json
import logging
from collections import deque
from typing import AsyncIterator, Optional

logger = logging.getLogger(__name__)

# Lines of stderr kept for error messages
STDERR_TAIL_LINES = 40
# Characters of stderr surfaced in an error message
STDERR_TAIL_CHARS = 500


class FFmpegError(Exception):
    """The encoder failed to start or exited with a non-zero status."""

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


def parse_progress_line(line: str, duration: float) -> Optional[float]:
    """Convert one ``-progress`` line into a completion percentage.

    ffmpeg reports elapsed output time as ``out_time_us`` and, despite the
    name, ``out_time_ms`` (both microseconds).

    Args:
        line: A single line of progress output
        duration: Source duration in seconds

    Returns:
        Percentage in [0, 100], or None if the line carries no timing
    """
    if duration <= 0:
        return None

    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms"):
        return None

    try:
        microseconds = int(value)
    except ValueError:
        return None

    if microseconds < 0:
        return None

    current_seconds = microseconds / 1_000_000
    return min(100.0, current_seconds / duration * 100)


class FFmpegRunner:
    """Spawns ffmpeg/ffprobe as child processes without blocking the event loop."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe"):
        """Initialize runner.

        Args:
            ffmpeg_path: Path to ffmpeg binary
            ffprobe_path: Path to ffprobe binary
        """
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path

    async def run(self, args: list[str], duration: float = 0.0) -> AsyncIterator[float]:
        """Run ffmpeg and yield progress percentages while it encodes.

        Args:
            args: Arguments after the binary name (no ``-progress`` flag)
            duration: Source duration in seconds, used to scale progress

        Yields:
            Non-decreasing completion percentages

        Raises:
            FFmpegError: If the process cannot start or exits non-zero
        """
        cmd = [self.ffmpeg_path, "-hide_banner", "-nostdin", "-progress", "pipe:1", *args]

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FFmpegError(f"ffmpeg not found or failed to start: {e}") from e

        stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
        # stderr must be drained concurrently or a chatty encode fills the pipe and stalls
        stderr_task = asyncio.create_task(self._drain(process.stderr, stderr_tail))

        last_percent = 0.0
        try:
            while True:
                line = await process.stdout.readline()
                if not line:
                    break
                percent = parse_progress_line(line.decode("utf-8", errors="ignore"), duration)
                if percent is not None and percent > last_percent:
                    last_percent = percent
                    yield percent

            returncode = await process.wait()
            await stderr_task
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()
            if not stderr_task.done():
                stderr_task.cancel()

        if returncode != 0:
            stderr = "".join(stderr_tail)[-STDERR_TAIL_CHARS:]
            raise FFmpegError(
                f"ffmpeg exited with code {returncode}: {stderr}",
                returncode=returncode,
                stderr=stderr,
            )

    async def run_to_completion(self, args: list[str]) -> None:
        """Run ffmpeg when nobody needs the progress stream."""
        async for _ in self.run(args):
            pass

    async def probe_json(self, args: list[str]) -> dict:
        """Run ffprobe and parse its JSON output.

        Args:
            args: Arguments after the binary name

        Returns:
            Parsed JSON document

        Raises:
            FFmpegError: If ffprobe fails or prints something that is not JSON
        """
        try:
            process = await asyncio.create_subprocess_exec(
                self.ffprobe_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise FFmpegError(f"ffprobe not found or failed to start: {e}") from e

        stdout, stderr = await process.communicate()
        stderr_text = stderr.decode("utf-8", errors="ignore")[-STDERR_TAIL_CHARS:]

        if process.returncode != 0:
            raise FFmpegError(
                f"ffprobe exited with code {process.returncode}: {stderr_text}",
                returncode=process.returncode,
                stderr=stderr_text,
            )

        try:
            return json.loads(stdout.decode("utf-8", errors="ignore") or "{}")
        except json.JSONDecodeError as e:
            raise FFmpegError(f"Failed to parse ffprobe output: {e}") from e

    @staticmethod
    async def _drain(stream: asyncio.StreamReader, sink: deque) -> None:
        while True:
            line = await stream.readline()
            if not line:
                return
            sink.append(line.decode("utf-8", errors="ignore"))
