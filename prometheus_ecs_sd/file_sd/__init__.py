"""Prometheus file_sd output: atomic document writer and the thread that feeds it."""

from .adapter import Adapter
from .writer import FileSDWriter

__all__ = ["Adapter", "FileSDWriter"]
