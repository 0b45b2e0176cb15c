"""Tests for sandbox.py: path containment against a temp root."""

import os

import pytest

from vidshelf.tools.errors import AccessDenied
from vidshelf.tools.sandbox import resolve_path, to_relative_path


@pytest.fixture()
def root(tmp_path):
    r = tmp_path / "videos"
    (r / "clips").mkdir(parents=True)
    (r / "clips" / "a.mp4").write_bytes(b"x")
    return r.resolve()


class TestResolvePath:
    @pytest.mark.parametrize("rel", ["/", "", None, ".", "/./"])
    def test_root_aliases(self, root, rel):
        assert resolve_path(root, rel) == root

    def test_leading_slash_is_sandbox_rooted(self, root):
        assert resolve_path(root, "/clips/a.mp4") == root / "clips" / "a.mp4"
        assert resolve_path(root, "clips/a.mp4") == root / "clips" / "a.mp4"

    def test_inner_dotdot_that_stays_inside(self, root):
        assert resolve_path(root, "/clips/../clips/a.mp4") == root / "clips" / "a.mp4"

    def test_backslashes_normalized(self, root):
        assert resolve_path(root, "clips\\a.mp4") == root / "clips" / "a.mp4"

    def test_missing_path_inside_root_is_allowed(self, root):
        assert resolve_path(root, "/nope.mp4") == root / "nope.mp4"

    @pytest.mark.parametrize("rel", [
        "..",
        "../",
        "/../../etc/passwd",
        "clips/../../..",
        "..\\..\\windows",
    ])
    def test_traversal_rejected(self, root, rel):
        with pytest.raises(AccessDenied):
            resolve_path(root, rel)

    def test_sibling_with_common_prefix_rejected(self, root):
        sibling = root.parent / (root.name + "-old")
        sibling.mkdir()
        with pytest.raises(AccessDenied):
            resolve_path(root, f"../{sibling.name}")

    def test_symlink_escape_rejected(self, root, tmp_path):
        outside = tmp_path / "outside"
        outside.mkdir()
        (outside / "secret.mp4").write_bytes(b"s")
        os.symlink(outside, root / "link")
        with pytest.raises(AccessDenied):
            resolve_path(root, "/link/secret.mp4")

    def test_symlink_inside_root_allowed(self, root):
        os.symlink(root / "clips", root / "alias")
        assert resolve_path(root, "/alias/a.mp4") == root / "clips" / "a.mp4"

    def test_nul_byte_rejected(self, root):
        with pytest.raises(AccessDenied):
            resolve_path(root, "clips/a.mp4\x00.txt")


class TestToRelativePath:
    def test_child_has_leading_slash(self, root):
        assert to_relative_path(root, root / "clips" / "a.mp4") == "/clips/a.mp4"

    def test_root_is_slash(self, root):
        assert to_relative_path(root, root) == "/"

    def test_round_trip(self, root):
        rel = to_relative_path(root, root / "clips" / "a.mp4")
        assert resolve_path(root, rel) == root / "clips" / "a.mp4"
