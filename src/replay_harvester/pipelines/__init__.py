"""Harvest flows: one-off bootstrap and the perpetual sweep."""

from .bootstrap import bootstrap_index
from .sweep import SweepController

__all__ = ['bootstrap_index', 'SweepController']
