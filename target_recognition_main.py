#!/usr/bin/env python3
"""Compatibility shim for the target recognition CLI entry point."""

from app.cli import TargetRecognitionSystem, main

__all__ = ["TargetRecognitionSystem", "main"]


if __name__ == "__main__":
    main()
