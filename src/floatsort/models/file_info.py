"""File metadata snapshot used for rule matching."""

import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def _utc(timestamp: Optional[float]) -> Optional[datetime]:
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class FileInfo:
    """Immutable snapshot of a filesystem entry.

    Captured once per processing attempt. ``extension`` keeps its original
    case and has no leading dot; matching lower-cases it.
    """
    path: Path
    name: str
    extension: str
    size: int
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None
    is_directory: bool = False

    @property
    def stem(self) -> str:
        """File name without its extension."""
        if self.extension and self.name.endswith(f".{self.extension}"):
            return self.name[:-(len(self.extension) + 1)]
        return self.name

    @classmethod
    def from_path(cls, path: Path) -> "FileInfo":
        """Capture metadata for ``path``.

        Raises:
            OSError: If the path cannot be stat'ed.
        """
        path = Path(path).absolute()
        stat = path.stat()

        created = getattr(stat, "st_birthtime", None)
        if created is None and os.name == "nt":
            created = stat.st_ctime

        return cls(
            path=path,
            name=path.name,
            extension=path.suffix[1:] if path.suffix else "",
            size=stat.st_size,
            created_at=_utc(created),
            modified_at=_utc(stat.st_mtime),
            is_directory=path.is_dir(),
        )
