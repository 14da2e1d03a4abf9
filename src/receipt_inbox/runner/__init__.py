"""CLI runner for the receipt upload pipeline."""

from .main import main

__all__ = ["main"]
