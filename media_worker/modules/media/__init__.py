"""Durable media record: model, repository, artifact schemas and paths."""
