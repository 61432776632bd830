import logging
import os
from pathlib import Path, PurePosixPath

from .errors import ForbiddenPathError, InvalidMergeRequest

logger = logging.getLogger("segmerge.paths")


def to_client_path(root: Path, path: Path) -> str:
    """Express ``path`` relative to ``root`` with forward slashes."""
    return path.relative_to(root).as_posix()


def resolve_under_root(root: Path, rel: str) -> Path:
    """Resolve a slash-separated client path against ``root``.

    The canonical result must be a strict descendant of ``root``. Containment
    is decided on path segments, so a sibling such as ``/data/videos2`` never
    passes for a root of ``/data/videos``. Absolute client paths replace the
    root when joined and are rejected by the same check.
    """
    root = root.resolve()
    parts = PurePosixPath(rel).parts
    try:
        target = root.joinpath(*parts).resolve()
    except (OSError, RuntimeError, ValueError) as exc:
        logger.warning("Invalid path provided for %s: %r", root, rel)
        raise InvalidMergeRequest(f"Invalid path: {rel}") from exc

    try:
        relative = target.relative_to(root)
    except ValueError:
        logger.warning("Blocked path traversal attempt: %r -> %s", rel, target)
        raise ForbiddenPathError(rel)

    if not relative.parts:
        logger.warning("Blocked request for the root directory itself: %r", rel)
        raise ForbiddenPathError(rel)

    return target


def escape_concat_path(path: Path) -> str:
    """Escape a path for a ``file '...'`` line of an ffmpeg concat manifest.

    Single quotes close the quoted string, so each one is written as ``'\\''``.
    Newlines would start a new directive and are refused outright.
    """
    path_str = path.as_posix()
    if "\n" in path_str or "\r" in path_str:
        raise InvalidMergeRequest(f"Path contains newline characters: {path_str!r}")
    return path_str.replace("'", "'\\''")


def client_parent_dir(root: Path, rel: str) -> Path:
    """Directory that holds ``rel`` as the client named it.

    ``.`` and ``..`` are collapsed lexically and symlinks along the final
    name are not followed, so a linked recording still gets its sibling
    output next to the link. The directory must still live under ``root``.
    """
    root = root.resolve()
    joined = Path(os.path.normpath(root.joinpath(*PurePosixPath(rel).parts)))
    parent = joined.parent
    try:
        parent.resolve().relative_to(root)
        parent.relative_to(root)
    except ValueError:
        logger.warning("Blocked output directory outside root: %r -> %s", rel, parent)
        raise ForbiddenPathError(rel)
    return parent
