"""Unit tests for the offline progress report."""

from replay_harvester.raw_io.report import (
    format_summary_for_display,
    summarize_index,
    summarize_rank,
)

from conftest import make_page, replay_links


def test_uninitialized_rank(store):
    summary = summarize_rank(store, "gold-1", 5)

    assert summary["initialized"] is False
    assert summary["processed"] == 0
    assert summary["error"] is None


def test_progress_counts_only_committed_replays(store):
    store.initialize_rank("gold-1", make_page(4, replay_links("g", 4)))
    store.save_artifact("gold-1", 0, '{"id": 0}')
    store.save_artifact("gold-1", 2, '{"id": 2}')
    # Left by an interrupted step, not yet counted
    store.save_artifact("gold-1", 3, '{"id": 3}')
    store.save_counter("gold-1", 3)

    summary = summarize_rank(store, "gold-1", 5)

    assert summary["processed"] == 3
    assert summary["artifacts"] == 2
    assert summary["skipped"] == 1
    assert summary["upstream_count"] == 4
    assert summary["caught_up"] is False


def test_caught_up_rank(store):
    store.initialize_rank("gold-1", make_page(2, replay_links("g", 2)))
    store.save_counter("gold-1", 2)

    assert summarize_rank(store, "gold-1", 5)["caught_up"] is True


def test_corrupt_counter_reported_not_raised(store):
    store.initialize_rank("gold-1", make_page(2, replay_links("g", 2)))
    store.counter_path("gold-1").write_text("two")

    summary = summarize_rank(store, "gold-1", 5)

    assert summary["error"] is not None


def test_display_lists_every_rank(store):
    store.initialize_rank("gold-1", make_page(2, replay_links("g", 2)))
    summary = summarize_index(store, ["gold-1", "gold-2"], 5)

    text = format_summary_for_display(summary)

    assert summary["initialized_ranks"] == 1
    assert "gold-1" in text
    assert "gold-2" in text
    assert "not initialized" in text
    assert "Ranks initialized: 1/2" in text


def test_caught_up_on_page_boundary(store):
    store.initialize_rank("gold-1", make_page(5, replay_links("g", 5), "https://api.test/replays?after=p1"))
    store.save_counter("gold-1", 5)

    summary = summarize_rank(store, "gold-1", 5)

    assert summary["caught_up"] is True
    assert summary["pages"] == 1


def test_page_boundary_with_more_upstream_is_in_progress(store):
    store.initialize_rank("gold-1", make_page(9, replay_links("g", 5), "https://api.test/replays?after=p1"))
    store.save_counter("gold-1", 5)

    assert summarize_rank(store, "gold-1", 5)["caught_up"] is False
