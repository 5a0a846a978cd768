"""Deterministic object-store keys for uploaded artifacts."""

AUDIO_EXT = "mp3"
CAPTION_EXT = "vtt"
VARIANT_EXT = "mp4"


def audio_track_path(media_id: str, index: int, total: int) -> str:
    """Key for an audio track.

    A lone track keeps the unsuffixed legacy key that players treat as the
    default track.
    """
    if total == 1:
        return f"audio/{media_id}.{AUDIO_EXT}"
    return f"audio/{media_id}_track{index}.{AUDIO_EXT}"


def subtitle_track_path(media_id: str, index: int, external: bool = False) -> str:
    """Key for a caption track; container and uploaded tracks use separate namespaces."""
    if external:
        return f"subtitles/{media_id}_ext{index}.{CAPTION_EXT}"
    return f"subtitles/{media_id}_track{index}.{CAPTION_EXT}"


def variant_path(media_id: str, quality: str) -> str:
    return f"variants/{media_id}/{quality}.{VARIANT_EXT}"
