from pathlib import Path

import pytest

from segmerge.errors import ForbiddenPathError, InvalidMergeRequest
from segmerge.paths import client_parent_dir, escape_concat_path, resolve_under_root, to_client_path


def test_resolve_under_root_joins_slash_paths(tmp_path):
    root = tmp_path.resolve()
    assert resolve_under_root(root, "a/b/c.mp4") == root / "a" / "b" / "c.mp4"


def test_resolve_under_root_normalizes_dot_segments(tmp_path):
    root = tmp_path.resolve()
    assert resolve_under_root(root, "a/./x/../c.mp4") == root / "a" / "c.mp4"


@pytest.mark.parametrize("rel", ["..", "../x.mp4", "a/../../x.mp4", "/etc/passwd", "", "a/.."])
def test_resolve_under_root_rejects_escapes_and_root_itself(tmp_path, rel):
    with pytest.raises(ForbiddenPathError) as exc:
        resolve_under_root(tmp_path, rel)
    assert exc.value.status_code == 403
    assert exc.value.path == rel


def test_resolve_under_root_compares_segments_not_prefixes(tmp_path):
    root = tmp_path / "videos"
    root.mkdir()
    (tmp_path / "videos2").mkdir()
    with pytest.raises(ForbiddenPathError):
        resolve_under_root(root, "../videos2/clip.mp4")


def test_resolve_under_root_rejects_symlink_leaving_root(tmp_path):
    root = tmp_path / "videos"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)
    with pytest.raises(ForbiddenPathError):
        resolve_under_root(root, "link/clip.mp4")


def test_escape_concat_path_handles_quotes():
    sample = Path("/tmp/weird name with 'quote.mp4")
    assert escape_concat_path(sample) == "/tmp/weird name with '\\''quote.mp4"


def test_escape_concat_path_rejects_newlines():
    with pytest.raises(InvalidMergeRequest):
        escape_concat_path(Path("/tmp/a\nb.mp4"))


def test_to_client_path_uses_forward_slashes(tmp_path):
    assert to_client_path(tmp_path, tmp_path / "a" / "b.mp4") == "a/b.mp4"


def test_client_parent_dir_keeps_the_named_directory(tmp_path):
    root = tmp_path.resolve()
    (root / "show").mkdir()
    (root / "archive").mkdir()
    (root / "archive" / "real.mp4").write_bytes(b"x")
    (root / "show" / "latest.mp4").symlink_to(root / "archive" / "real.mp4")

    assert client_parent_dir(root, "show/latest.mp4") == root / "show"
    assert client_parent_dir(root, "show/./x/../latest.mp4") == root / "show"


def test_client_parent_dir_rejects_directory_resolving_outside_root(tmp_path):
    root = tmp_path / "videos"
    outside = tmp_path / "outside"
    root.mkdir()
    outside.mkdir()
    (root / "link").symlink_to(outside, target_is_directory=True)

    with pytest.raises(ForbiddenPathError):
        client_parent_dir(root, "link/clip.mp4")
