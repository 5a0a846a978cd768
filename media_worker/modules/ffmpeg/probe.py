"""Container inspection.

Enumerates audio and subtitle streams of a downloaded container with
ffprobe. A probe failure is fatal for the job: a container ffprobe cannot
parse is treated as unsalvageable.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from media_worker.modules.ffmpeg.commands import probe_args
from media_worker.modules.ffmpeg.runner import FFmpegError, FFmpegRunner

logger = logging.getLogger(__name__)

UNKNOWN_LANGUAGE = "und"

# Assumed source height when the video stream cannot be read
DEFAULT_SOURCE_HEIGHT = 720

# Bitmap caption codecs; these need OCR to become text and are never extracted
IMAGE_SUBTITLE_CODECS = frozenset({
    "hdmv_pgs_subtitle",
    "pgssub",
    "dvd_subtitle",
    "dvdsub",
    "dvb_subtitle",
    "dvbsub",
    "dvb_teletext",
    "xsub",
})


class ProbeError(Exception):
    """The container could not be inspected."""
    pass


@dataclass
class AudioStreamDescriptor:
    """One audio stream of the container."""
    relative_index: int  # position among audio streams
    stream_index: int  # absolute container stream index
    codec: str
    channels: int = 0
    sample_rate: int = 0
    language: str = UNKNOWN_LANGUAGE
    title: Optional[str] = None


@dataclass
class SubtitleStreamDescriptor:
    """One subtitle stream of the container."""
    relative_index: int
    stream_index: int
    codec: str
    language: str = UNKNOWN_LANGUAGE
    title: Optional[str] = None
    is_image_based: bool = False


@dataclass
class MediaProbeResult:
    """Everything the stages need to know about a container."""
    duration: float
    audio_streams: list[AudioStreamDescriptor] = field(default_factory=list)
    subtitle_streams: list[SubtitleStreamDescriptor] = field(default_factory=list)
    video_width: Optional[int] = None
    video_height: Optional[int] = None

    @property
    def text_subtitle_streams(self) -> list[SubtitleStreamDescriptor]:
        """Subtitle streams that can be converted to text captions."""
        return [s for s in self.subtitle_streams if not s.is_image_based]

    @property
    def source_height(self) -> int:
        """Vertical resolution of the first video stream, 720 if unknown."""
        return self.video_height or DEFAULT_SOURCE_HEIGHT


def _to_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _to_float(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _tags(stream: dict) -> dict:
    # Tag keys vary in case between muxers (LANGUAGE vs language)
    return {str(k).lower(): v for k, v in (stream.get("tags") or {}).items()}


def parse_probe_output(info: dict) -> MediaProbeResult:
    """Build a MediaProbeResult from ffprobe's JSON document.

    Args:
        info: Output of ``ffprobe -show_format -show_streams -print_format json``

    Returns:
        MediaProbeResult with streams in container order

    Raises:
        ProbeError: If the document describes no streams at all
    """
    streams = info.get("streams")
    if not streams:
        raise ProbeError("No streams found in media file")

    fmt = info.get("format") or {}
    duration = _to_float(fmt.get("duration"))

    result = MediaProbeResult(duration=duration)

    for stream in streams:
        codec_type = stream.get("codec_type")
        codec = stream.get("codec_name") or "unknown"
        tags = _tags(stream)
        language = tags.get("language") or UNKNOWN_LANGUAGE
        title = tags.get("title") or None
        stream_index = _to_int(stream.get("index"), default=-1)

        if codec_type == "video":
            # Attached pictures (cover art) are reported as video streams
            if (stream.get("disposition") or {}).get("attached_pic"):
                continue
            if result.video_height is None:
                height = _to_int(stream.get("height"))
                width = _to_int(stream.get("width"))
                result.video_height = height or None
                result.video_width = width or None
            if not duration:
                duration = _to_float(stream.get("duration"))

        elif codec_type == "audio":
            result.audio_streams.append(
                AudioStreamDescriptor(
                    relative_index=len(result.audio_streams),
                    stream_index=stream_index,
                    codec=codec,
                    channels=_to_int(stream.get("channels")),
                    sample_rate=_to_int(stream.get("sample_rate")),
                    language=language,
                    title=title,
                )
            )

        elif codec_type == "subtitle":
            result.subtitle_streams.append(
                SubtitleStreamDescriptor(
                    relative_index=len(result.subtitle_streams),
                    stream_index=stream_index,
                    codec=codec,
                    language=language,
                    title=title,
                    is_image_based=codec in IMAGE_SUBTITLE_CODECS,
                )
            )

    result.duration = duration
    return result


async def probe_media(runner: FFmpegRunner, input_path: str) -> MediaProbeResult:
    """Inspect a local container.

    Args:
        runner: Encoder runner
        input_path: Path to the downloaded container

    Returns:
        MediaProbeResult

    Raises:
        ProbeError: If ffprobe fails or its output is unusable
    """
    try:
        info = await runner.probe_json(probe_args(input_path))
    except FFmpegError as e:
        raise ProbeError(f"Failed to probe media: {e}") from e

    result = parse_probe_output(info)
    logger.info(
        "Probed media",
        extra={
            "duration": result.duration,
            "audio_streams": len(result.audio_streams),
            "subtitle_streams": len(result.subtitle_streams),
            "video_height": result.video_height,
        },
    )
    return result
