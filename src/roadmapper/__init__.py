"""Resumable, checkpointed roadmap generation."""

__version__ = "0.1.0"
