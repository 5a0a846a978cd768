"""Audio and caption extraction."""
