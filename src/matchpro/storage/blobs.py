from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

RESUME_PREFIX = "resume/"
RESUME_SUFFIX = ".txt"


def resume_key(resume_id: str) -> str:
    return f"{RESUME_PREFIX}{resume_id}{RESUME_SUFFIX}"


class BlobStore(Protocol):
    def put_text(self, key: str, text: str) -> None: ...

    def get_text(self, key: str) -> str | None: ...


class LocalBlobStore:
    """Keeps one UTF-8 file per key below ``root``."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root.resolve() not in path.parents:
            raise ValueError(f"blob key escapes store root: {key!r}")
        return path

    def put_text(self, key: str, text: str) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        logger.debug("Stored blob key=%s chars=%s", key, len(text))

    def get_text(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")
