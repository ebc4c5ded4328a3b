"""Data models for index pages and sweep results."""

from .pages import ItemReference, Page
from .outcomes import (
    FetchResult,
    FetchStatus,
    ResolveResult,
    ResolveStatus,
    StepOutcome,
    StepResult,
)

__all__ = [
    'ItemReference',
    'Page',
    'FetchResult',
    'FetchStatus',
    'ResolveResult',
    'ResolveStatus',
    'StepOutcome',
    'StepResult',
]
