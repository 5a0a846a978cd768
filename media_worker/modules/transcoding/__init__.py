"""Variant transcoding: quality presets and the transcode pipeline."""
