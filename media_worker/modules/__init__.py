"""Worker feature modules."""
