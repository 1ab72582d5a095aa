from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Generator, Iterable, Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_dir(p: PathLike) -> Path:
    """Ensure that a directory exists, returning it as a Path."""
    p = Path(p)
    try:
        p.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise OSError(f"Failed to create directory {p}: {e}") from e
    return p


def append_jsonl(path: PathLike, *items: Dict[str, Any]) -> None:
    """Append JSON-serializable dicts, one per line, with a single write.

    Every item is serialized before the file is touched, so a bad item leaves
    the file unchanged.
    """
    try:
        lines = [json.dumps(item, ensure_ascii=False) for item in items]
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize item to JSON: {e}") from e
    if not lines:
        return

    with open(path, "a", encoding="utf-8") as f:
        f.write("".join(line + "\n" for line in lines))
        f.flush()


def read_jsonl(path: PathLike, *, stream: bool = False) -> Iterable[Dict[str, Any]]:
    """Read a JSONL file into memory or stream it line by line.

    Parameters
    ----------
    path : str | Path
        The JSONL file path.
    stream : bool
        If True, yield entries lazily (generator).
        If False, return a full list of entries.

    Missing files read as empty. Corrupt lines are skipped with a warning.
    """
    p = Path(path)
    if not p.exists():
        return [] if not stream else iter(())

    def _iter() -> Generator[Dict[str, Any], None, None]:
        with open(p, "r", encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    item = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Skipping corrupt line %d in %s: %s", line_no, p, e)
                    continue
                if isinstance(item, dict):
                    yield item

    return _iter() if stream else list(_iter())


def read_json(path: PathLike) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
