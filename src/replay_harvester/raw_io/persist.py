"""Durable per-rank storage for index pages, progress counters and replays.

Layout under the index directory::

    <rank>/0.json, <rank>/1.json, ...   index pages, never rewritten
    <rank>/num_processed.txt            progress counter as plain integer text
    <rank>/parsed/<n>.json              replay downloaded at counter value n
"""

import os
import re
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from ..errors import CorruptStateError
from ..harvest_logging import get_logger
from ..models.pages import Page

logger = get_logger(__name__)

COUNTER_FILE = "num_processed.txt"
ARTIFACT_DIR = "parsed"

_NUMBERED_JSON = re.compile(r"^(\d+)\.json$")


def ensure_dir(path: Path) -> None:
    """Ensure directory exists, creating parent directories as needed."""
    path.mkdir(parents=True, exist_ok=True)


def write_text_atomic(path: Path, content: Union[str, bytes]) -> int:
    """Atomically replace ``path`` with ``content``.

    The data is written to a temporary sibling, fsynced, then renamed over the
    target so readers never observe a partial file.

    Returns:
        Number of bytes written
    """
    data = content.encode('utf-8') if isinstance(content, str) else content
    ensure_dir(path.parent)

    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'wb') as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    # Fsync directory so the rename itself is durable
    try:
        dir_fd = os.open(str(path.parent), os.O_RDONLY)
    except OSError:
        return len(data)
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)

    return len(data)


class PageStore:
    """File-backed page, counter and replay store rooted at ``root``."""

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root)

    def layout_exists(self) -> bool:
        """Whether the index directory has been created."""
        return self.root.is_dir()

    def rank_dir(self, rank: str) -> Path:
        return self.root / rank

    def page_path(self, rank: str, index: int) -> Path:
        return self.rank_dir(rank) / f"{index}.json"

    def counter_path(self, rank: str) -> Path:
        return self.rank_dir(rank) / COUNTER_FILE

    def artifact_path(self, rank: str, counter: int) -> Path:
        return self.rank_dir(rank) / ARTIFACT_DIR / f"{counter}.json"

    def is_initialized(self, rank: str) -> bool:
        """A rank is initialized once page 0 and its counter exist."""
        return self.page_path(rank, 0).is_file() and self.counter_path(rank).is_file()

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    def has_page(self, rank: str, index: int) -> bool:
        return self.page_path(rank, index).is_file()

    def load_page(self, rank: str, index: int) -> Optional[Page]:
        """Load and parse a stored index page.

        Returns:
            The parsed page, or None when no page is stored at ``index``

        Raises:
            CorruptStateError: If the stored page cannot be parsed
        """
        path = self.page_path(rank, index)
        try:
            raw = path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptStateError(f"Failed to read index page {path}: {e}", rank=rank) from e

        try:
            return Page.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptStateError(f"Failed to parse index page {path}: {e}", rank=rank) from e

    def save_page(self, rank: str, index: int, raw: str) -> bool:
        """Persist a raw index page unless one is already stored at ``index``.

        Returns:
            True if the page was written, False if it already existed
        """
        path = self.page_path(rank, index)
        if self.has_page(rank, index):
            if path.read_text(encoding='utf-8') != raw:
                logger.warning("Index page already stored with different content, keeping original",
                               rank=rank, page_index=index, path=str(path))
            return False

        size = write_text_atomic(path, raw)
        logger.debug("Wrote index page", rank=rank, page_index=index, size=size)
        return True

    def page_indices(self, rank: str) -> List[int]:
        """Sorted indices of all stored pages for ``rank``."""
        return self._numbered(self.rank_dir(rank))

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def load_counter(self, rank: str) -> int:
        """Read the progress counter for ``rank``.

        Raises:
            CorruptStateError: If the counter file is missing or unparsable
        """
        path = self.counter_path(rank)
        try:
            text = path.read_text(encoding='utf-8').strip()
        except FileNotFoundError as e:
            raise CorruptStateError(
                f"Progress counter missing for {rank} ({path}); run --setup-index first",
                rank=rank
            ) from e
        except OSError as e:
            raise CorruptStateError(f"Failed to read progress counter {path}: {e}", rank=rank) from e

        try:
            value = int(text)
        except ValueError as e:
            raise CorruptStateError(f"Progress counter for {rank} is not an integer: {text!r}", rank=rank) from e
        if value < 0:
            raise CorruptStateError(f"Progress counter for {rank} is negative: {value}", rank=rank)
        return value

    def save_counter(self, rank: str, value: int) -> None:
        if value < 0:
            raise ValueError(f"Progress counter cannot be negative: {value}")
        write_text_atomic(self.counter_path(rank), str(value))

    # ------------------------------------------------------------------
    # Artifacts
    # ------------------------------------------------------------------

    def save_artifact(self, rank: str, counter: int, payload: Union[str, bytes]) -> int:
        """Persist a downloaded replay under the counter value it was fetched at.

        Re-writing the same counter value replaces the previous file.

        Returns:
            Number of bytes written
        """
        path = self.artifact_path(rank, counter)
        if self.has_artifact(rank, counter):
            logger.info("Replacing replay left by an interrupted run", rank=rank, counter=counter)
        return write_text_atomic(path, payload)

    def has_artifact(self, rank: str, counter: int) -> bool:
        return self.artifact_path(rank, counter).is_file()

    def artifact_indices(self, rank: str) -> List[int]:
        """Sorted counter values with a stored replay for ``rank``."""
        return self._numbered(self.rank_dir(rank) / ARTIFACT_DIR)

    # ------------------------------------------------------------------
    # Bootstrap
    # ------------------------------------------------------------------

    def initialize_rank(self, rank: str, raw_page: str) -> None:
        """Create a rank's namespace with page 0 and a zero counter.

        Page 0 is written before the counter so a rank only counts as
        initialized once both exist.
        """
        ensure_dir(self.rank_dir(rank))
        write_text_atomic(self.page_path(rank, 0), raw_page)
        write_text_atomic(self.counter_path(rank), "0")
        logger.info("Initialized rank index", rank=rank, path=str(self.rank_dir(rank)))

    @staticmethod
    def _numbered(directory: Path) -> List[int]:
        if not directory.is_dir():
            return []
        indices = []
        for entry in directory.iterdir():
            match = _NUMBERED_JSON.match(entry.name)
            if match and entry.is_file():
                indices.append(int(match.group(1)))
        return sorted(indices)
