"""Progress reporting for a persisted replay index."""

from typing import Any, Dict, List, Sequence

from ..errors import CorruptStateError
from ..harvest_logging import get_logger
from .persist import PageStore

logger = get_logger(__name__)


def summarize_rank(store: PageStore, rank: str, page_size: int) -> Dict[str, Any]:
    """Compute progress for one rank without touching the network.

    Returns:
        Dictionary with rank summary:
        {
            "rank": str,
            "initialized": bool,
            "processed": int,
            "pages": int,
            "artifacts": int,
            "skipped": int,
            "upstream_count": Optional[int],
            "caught_up": bool,
            "error": Optional[str]
        }
    """
    summary: Dict[str, Any] = {
        "rank": rank,
        "initialized": store.is_initialized(rank),
        "processed": 0,
        "pages": len(store.page_indices(rank)),
        "artifacts": 0,
        "skipped": 0,
        "upstream_count": None,
        "caught_up": False,
        "error": None,
    }
    if not summary["initialized"]:
        return summary

    try:
        processed = store.load_counter(rank)
        first_page = store.load_page(rank, 0)
        # A counter on a page boundary is checked against the page it finished
        current_index = max(processed - 1, 0) // page_size
        current_page = store.load_page(rank, current_index)
    except CorruptStateError as e:
        logger.warning("Rank state unreadable", rank=rank, error=str(e))
        summary["error"] = str(e)
        return summary

    # Replays at or past the counter belong to an interrupted step
    committed = [n for n in store.artifact_indices(rank) if n < processed]

    summary["processed"] = processed
    summary["artifacts"] = len(committed)
    summary["skipped"] = processed - len(committed)
    summary["upstream_count"] = first_page.count if first_page else None
    summary["caught_up"] = current_page is not None and current_page.count == processed
    return summary


def summarize_index(store: PageStore, ranks: Sequence[str], page_size: int) -> Dict[str, Any]:
    """Summarize every configured rank plus totals."""
    rank_summaries: List[Dict[str, Any]] = [summarize_rank(store, rank, page_size) for rank in ranks]
    return {
        "index_dir": str(store.root),
        "ranks": rank_summaries,
        "total_processed": sum(r["processed"] for r in rank_summaries),
        "total_artifacts": sum(r["artifacts"] for r in rank_summaries),
        "total_skipped": sum(r["skipped"] for r in rank_summaries),
        "initialized_ranks": sum(1 for r in rank_summaries if r["initialized"]),
        "caught_up_ranks": sum(1 for r in rank_summaries if r["caught_up"]),
    }


def format_summary_for_display(summary: Dict[str, Any]) -> str:
    """Format an index summary for console display."""
    lines = [
        f"Replay index at {summary['index_dir']}",
        "=" * 50,
    ]

    for rank in summary["ranks"]:
        if rank["error"]:
            lines.append(f"  {rank['rank']:<18} ERROR: {rank['error']}")
            continue
        if not rank["initialized"]:
            lines.append(f"  {rank['rank']:<18} not initialized")
            continue

        upstream = rank["upstream_count"] if rank["upstream_count"] is not None else "?"
        status = "caught up" if rank["caught_up"] else "in progress"
        lines.append(
            f"  {rank['rank']:<18} {rank['processed']:>6}/{upstream:<6} "
            f"replays={rank['artifacts']} skipped={rank['skipped']} pages={rank['pages']} ({status})"
        )

    lines.extend([
        "",
        f"Ranks initialized: {summary['initialized_ranks']}/{len(summary['ranks'])}",
        f"Ranks caught up: {summary['caught_up_ranks']}",
        f"Processed: {summary['total_processed']} "
        f"(replays {summary['total_artifacts']}, skipped {summary['total_skipped']})",
    ])
    return "\n".join(lines)
