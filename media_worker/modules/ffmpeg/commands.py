"""FFmpeg argument builders.

Builders return the arguments that follow the binary name; the runner adds
the binary, ``-progress pipe:1`` and the other global flags. Streams are
always addressed by absolute container index (``0:<n>``) so a demux hits
exactly the stream the prober described.
"""

from media_worker.modules.transcoding.models import QualityPreset

# Universal listener format: stereo 44.1kHz MP3
AUDIO_CODEC = "libmp3lame"
AUDIO_BITRATE = "192k"
AUDIO_SAMPLE_RATE = "44100"
AUDIO_CHANNELS = "2"

# Variant audio
VARIANT_AUDIO_CODEC = "aac"
VARIANT_AUDIO_BITRATE = "192k"


def probe_args(input_path: str) -> list[str]:
    """ffprobe arguments describing every stream and the container format."""
    return [
        "-v", "quiet",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        input_path,
    ]


def audio_extract_args(input_path: str, output_path: str, stream_index: int) -> list[str]:
    """Demux one audio stream and re-encode it for listeners.

    Args:
        input_path: Downloaded container
        output_path: Destination MP3
        stream_index: Absolute container stream index

    Returns:
        ffmpeg arguments
    """
    return [
        "-y",
        "-i", input_path,
        "-map", f"0:{stream_index}",
        "-vn",
        "-acodec", AUDIO_CODEC,
        "-ab", AUDIO_BITRATE,
        "-ar", AUDIO_SAMPLE_RATE,
        "-ac", AUDIO_CHANNELS,
        output_path,
    ]


def subtitle_extract_args(input_path: str, output_path: str, stream_index: int) -> list[str]:
    """Demux one text subtitle stream straight to WebVTT."""
    return [
        "-y",
        "-i", input_path,
        "-map", f"0:{stream_index}",
        "-c:s", "webvtt",
        output_path,
    ]


def caption_convert_args(input_path: str, output_path: str) -> list[str]:
    """Convert a scripted caption file (ASS/SSA) to WebVTT."""
    return [
        "-y",
        "-i", input_path,
        "-c:s", "webvtt",
        output_path,
    ]


def variant_transcode_args(input_path: str, output_path: str, preset: QualityPreset) -> list[str]:
    """Build the encode for one quality variant.

    The picture is scaled to fit inside the target box keeping its aspect
    ratio, then padded to the exact target size.

    Args:
        input_path: Downloaded source video
        output_path: Destination MP4
        preset: Quality preset to encode

    Returns:
        ffmpeg arguments
    """
    width, height = preset.width, preset.height
    return [
        "-y",
        "-i", input_path,
        "-vf",
        f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2",
        "-c:v", "libx264",
        "-preset", preset.encoder_preset,
        "-crf", str(preset.crf),
        "-maxrate", preset.maxrate,
        "-bufsize", preset.bufsize,
        "-c:a", VARIANT_AUDIO_CODEC,
        "-b:a", VARIANT_AUDIO_BITRATE,
        "-movflags", "+faststart",
        output_path,
    ]
