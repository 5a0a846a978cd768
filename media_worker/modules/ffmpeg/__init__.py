"""External encoder integration: process runner, prober, command builders."""

from media_worker.modules.ffmpeg.runner import FFmpegError, FFmpegRunner
from media_worker.modules.ffmpeg.probe import ProbeError, MediaProbeResult

__all__ = ["FFmpegError", "FFmpegRunner", "ProbeError", "MediaProbeResult"]
