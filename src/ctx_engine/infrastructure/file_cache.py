from collections import OrderedDict
from pathlib import Path

from loguru import logger


class FileLineCache:
    """Bounded LRU cache of source files split into lines.

    Owned by a single ContextAssembler; not safe for concurrent mutation.
    """

    def __init__(self, max_entries: int = 128) -> None:
        if max_entries <= 0:
            raise ValueError(f"Cache capacity must be positive, got {max_entries}")
        self._entries: OrderedDict[Path, list[str]] = OrderedDict()
        self._max = max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def get_lines(self, file_path: str, project_root: Path) -> list[str] | None:
        """Returns the file's lines, or None when it cannot be read."""
        path = Path(file_path)
        if not path.is_absolute():
            path = project_root / path

        lines = self._entries.get(path)
        if lines is not None:
            # Move to end (LRU)
            self._entries.move_to_end(path)
            return lines

        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("Could not read source file {}: {}", path, e)
            return None

        self._entries[path] = lines
        # Evict oldest if over capacity
        while len(self._entries) > self._max:
            self._entries.popitem(last=False)
        return lines

    def clear(self) -> None:
        self._entries.clear()
