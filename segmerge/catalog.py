import logging
import os
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Tuple, Union

from .errors import CatalogScanError
from .paths import to_client_path

logger = logging.getLogger("segmerge.catalog")

MEDIA_EXTENSIONS = frozenset({".mp4", ".flv", ".ts", ".mkv"})


@dataclass(frozen=True)
class MediaEntry:
    path: str
    size: int
    mod_time: int

    def to_dict(self) -> Dict[str, Union[str, int]]:
        return {"path": self.path, "size": self.size, "modTime": self.mod_time}


def is_media_file(name: str) -> bool:
    return os.path.splitext(name)[1].lower() in MEDIA_EXTENSIONS


def _walk_media(root: Path) -> Iterator[Tuple[str, os.stat_result]]:
    if not root.is_dir():
        raise CatalogScanError(f"Video root is not a readable directory: {root}")
    try:
        os.listdir(root)
    except OSError as exc:
        raise CatalogScanError(f"Cannot read video root {root}: {exc}") from exc

    def _skip(exc: OSError) -> None:
        logger.debug("Skipping unreadable directory %s: %s", exc.filename, exc)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_skip):
        dirnames.sort()
        for name in sorted(filenames):
            if not is_media_file(name):
                continue
            full = os.path.join(dirpath, name)
            try:
                stat = os.stat(full)
            except OSError as exc:
                # Deleted between listing and stat, or a dangling link
                logger.debug("Skipping %s: %s", full, exc)
                continue
            if not stat_module.S_ISREG(stat.st_mode):
                continue
            yield to_client_path(root, Path(full)), stat


def list_media_paths(root: Path) -> List[str]:
    """Relative media paths in walk order (directories and names sorted)."""
    return [rel for rel, _ in _walk_media(root)]


def scan_media(root: Path) -> List[MediaEntry]:
    """All media under ``root`` with size and mtime, newest first."""
    entries = [
        MediaEntry(path=rel, size=stat.st_size, mod_time=int(stat.st_mtime))
        for rel, stat in _walk_media(root)
    ]
    entries.sort(key=lambda entry: (-entry.mod_time, entry.path))
    logger.info("Scanned %s: %d media files", root, len(entries))
    return entries
