"""Quality presets for video variants."""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class Quality(str, Enum):
    """Closed set of variant qualities."""
    Q_720P = "720p"
    Q_1080P = "1080p"
    Q_4K_HDR = "4k_hdr"


@dataclass(frozen=True)
class QualityPreset:
    """Encoder settings for one quality."""
    quality: Quality
    width: int
    height: int
    encoder_preset: str  # x264 effort level
    crf: int
    maxrate: str
    bufsize: str
    label: str

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def bitrate_kbps(self) -> int:
        """Bitrate ceiling in kbit/s."""
        return int(self.maxrate.rstrip("k"))


QUALITY_PRESETS: dict[Quality, QualityPreset] = {
    Quality.Q_720P: QualityPreset(
        quality=Quality.Q_720P,
        width=1280,
        height=720,
        encoder_preset="fast",
        crf=23,
        maxrate="2500k",
        bufsize="5000k",
        label="720p",
    ),
    Quality.Q_1080P: QualityPreset(
        quality=Quality.Q_1080P,
        width=1920,
        height=1080,
        encoder_preset="medium",
        crf=23,
        maxrate="5000k",
        bufsize="10000k",
        label="1080p",
    ),
    Quality.Q_4K_HDR: QualityPreset(
        quality=Quality.Q_4K_HDR,
        width=3840,
        height=2160,
        encoder_preset="slow",
        crf=22,
        maxrate="15000k",
        bufsize="30000k",
        label="4K",
    ),
}

DEFAULT_QUALITIES = [Quality.Q_720P.value]


def filter_qualities(requested: Iterable[str]) -> list[str]:
    """Keep only known quality labels, dropping duplicates, in request order."""
    known = {q.value for q in Quality}
    result: list[str] = []
    for label in requested:
        if label in known and label not in result:
            result.append(label)
    return result


def presets_ascending(qualities: Iterable[str]) -> list[QualityPreset]:
    """Presets for the given labels, lowest resolution first."""
    presets = [QUALITY_PRESETS[Quality(q)] for q in filter_qualities(qualities)]
    return sorted(presets, key=lambda p: p.height)
