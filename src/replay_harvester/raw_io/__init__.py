"""Raw replay index I/O.

Components:
- client: UpstreamClient for the listing and download endpoints
- persist: PageStore for pages, progress counters and downloaded replays
- report: Read-only progress summaries of a persisted index
"""

from .client import UpstreamClient, check_error_payload, initial_query_params, pin_max_rank
from .persist import PageStore, ensure_dir, write_text_atomic
from .report import summarize_index, summarize_rank, format_summary_for_display

__all__ = [
    'UpstreamClient',
    'check_error_payload',
    'initial_query_params',
    'pin_max_rank',
    'PageStore',
    'ensure_dir',
    'write_text_atomic',
    'summarize_index',
    'summarize_rank',
    'format_summary_for_display'
]
