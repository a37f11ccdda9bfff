"""Application entry points for the target recognition project."""

from .cli import TargetRecognitionSystem, main

__all__ = ["TargetRecognitionSystem", "main"]
