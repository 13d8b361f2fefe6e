"""Adaptive diagnostics engines: difficulty, topic rotation, grading, session statistics."""
