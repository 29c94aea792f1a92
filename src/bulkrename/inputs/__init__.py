"""Input discovery for rename batches."""

from .discovery import InputCollector

__all__ = ["InputCollector"]
