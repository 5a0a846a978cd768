"""SilentCine media worker: audio extraction, caption normalization and variant transcoding."""

__version__ = "0.1.0"
