"""Caption formats and text normalization to WebVTT.

SRT differs from WebVTT only in its timestamp separator, its numbered cues
and the missing header, so it is rewritten as text. ASS/SSA carry styling
and timing rules that cannot be rewritten safely and go through the
encoder instead. Normalizing output that is already WebVTT returns it
unchanged.
"""

import re
from enum import Enum
from pathlib import Path
from typing import Optional

from media_worker.modules.ffmpeg.probe import UNKNOWN_LANGUAGE

WEBVTT_HEADER = "WEBVTT"
CUE_TIMING_MARKER = "-->"

# hh:mm:ss,mmm -> hh:mm:ss.mmm; the lookarounds keep already-rewritten
# timestamps from matching again
_SRT_TIMESTAMP = re.compile(r"(?<![\d:.,])(\d{1,2}:\d{2}:\d{2}),(\d{3})(?!\d)")

_LANGUAGE_TOKEN = re.compile(r"^[a-z]{2,3}$")


class CaptionFormatError(Exception):
    """The caption file is unsupported or unusable."""
    pass


class CaptionFormat(str, Enum):
    """Accepted external caption formats."""
    SRT = "srt"
    VTT = "vtt"
    ASS = "ass"
    SSA = "ssa"

    @property
    def needs_encoder(self) -> bool:
        """Whether conversion must go through ffmpeg instead of text rewriting."""
        return self in (CaptionFormat.ASS, CaptionFormat.SSA)


def detect_format(filename: str) -> CaptionFormat:
    """Infer the caption format from the file extension.

    Raises:
        CaptionFormatError: If the extension is not supported
    """
    ext = Path(filename).suffix.lower().lstrip(".")
    try:
        return CaptionFormat(ext)
    except ValueError:
        allowed = ", ".join(f".{f.value}" for f in CaptionFormat)
        raise CaptionFormatError(f"Unsupported caption format '.{ext}'. Allowed: {allowed}")


def decode_caption_bytes(data: bytes) -> str:
    """Decode an uploaded caption, falling back to Latin-1 for legacy files."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def normalize_captions(text: str) -> str:
    """Rewrite SRT (or WebVTT) text into canonical WebVTT.

    - line endings become ``\\n`` and trailing whitespace is dropped
    - timestamps on cue timing lines use ``.`` before milliseconds
    - numeric cue identifiers directly above a timing line are removed
    - a ``WEBVTT`` header is added when missing

    Args:
        text: Caption file content

    Returns:
        WebVTT text ending in a single newline
    """
    lines = [line.rstrip() for line in text.lstrip("\ufeff").splitlines()]

    lines = [
        _SRT_TIMESTAMP.sub(r"\1.\2", line) if CUE_TIMING_MARKER in line else line
        for line in lines
    ]

    kept: list[str] = []
    for line in lines:
        if CUE_TIMING_MARKER in line:
            while kept and kept[-1].strip().isdigit():
                kept.pop()
        kept.append(line)

    while kept and not kept[0]:
        kept.pop(0)

    if not kept or not kept[0].startswith(WEBVTT_HEADER):
        kept = [WEBVTT_HEADER, ""] + kept

    return "\n".join(kept).rstrip() + "\n"


def count_cues(text: str) -> int:
    """Number of cue timing lines in a caption file."""
    return sum(1 for line in text.splitlines() if CUE_TIMING_MARKER in line)


def is_effectively_empty(text: str) -> bool:
    """True for captions without any cue, such as unused forced tracks."""
    return count_cues(text) == 0


def guess_language(filename: str) -> Optional[str]:
    """Guess a language code from names like ``movie.en.srt`` or ``movie_fr.ass``.

    Returns:
        Lower-cased 2-3 letter code, or None if the name carries none
    """
    stem = Path(filename).stem.lower()
    for separator in (".", "_", "-"):
        if separator in stem:
            candidate = stem.rsplit(separator, 1)[1]
            if _LANGUAGE_TOKEN.match(candidate):
                return candidate
    return None


def resolve_language(language: Optional[str], filename: str) -> str:
    """Explicit language, else one guessed from the filename, else ``und``."""
    if language and language.strip():
        return language.strip().lower()
    return guess_language(filename) or UNKNOWN_LANGUAGE


def default_label(filename: str) -> str:
    return Path(filename).stem or filename
