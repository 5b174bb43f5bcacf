"""Data adapters."""

from .data_loader import DataLoader
from .bar_store import BarStore

__all__ = ["DataLoader", "BarStore"]
