from __future__ import annotations

import io

from PIL import Image

from labcms.services.file_tree import (
    LOAD_FAILED,
    UNSUPPORTED_FORMAT,
    FileTreeBrowser,
    TreeNode,
    build_tree,
)
from labcms.services.platform import PlatformError, StorageObject


def _png_bytes(width: int = 3, height: int = 2) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color="red").save(buffer, format="PNG")
    return buffer.getvalue()


def _browser(platform, config) -> FileTreeBrowser:
    return FileTreeBrowser(platform, config.bucket)


def test_build_tree_nests_names_and_reuses_folders() -> None:
    items = [
        StorageObject("docs/a.txt", metadata={"mimetype": "text/plain"}),
        StorageObject("docs/b.txt", metadata={"mimetype": "text/plain"}),
        StorageObject("images"),
    ]

    tree = build_tree(items)

    assert [node.name for node in tree] == ["docs", "images"]
    docs, images = tree
    assert docs.is_folder and images.is_folder
    assert [child.path for child in docs.children] == ["docs/a.txt", "docs/b.txt"]
    assert all(not child.is_folder for child in docs.children)


def test_build_tree_prefixes_parent_path() -> None:
    tree = build_tree([StorageObject("x.png", metadata={"mimetype": "image/png"})], "member")

    assert tree[0].id == "member/x.png"
    assert tree[0].path == "member/x.png"


def test_toggle_loads_children_lazily(platform, temp_config) -> None:
    platform.upload(temp_config.bucket, "member/a.png", b"a")
    browser = _browser(platform, temp_config)
    folder = browser.refresh()[0]
    assert folder.children == []

    browser.toggle(folder)

    assert folder.is_open is True
    assert browser.current_path == "member"
    assert [child.path for child in folder.children] == ["member/a.png"]
    browser.toggle(folder)
    assert folder.is_open is False


def test_select_ignores_folders(platform, temp_config) -> None:
    browser = _browser(platform, temp_config)
    folder = TreeNode("f", "f", True, "f")
    file_node = TreeNode("f/a.txt", "a.txt", False, "f/a.txt")

    assert browser.select(folder) is None
    assert browser.select(file_node) is file_node
    assert browser.select(folder) is file_node


def test_fetch_failure_yields_empty_listing(temp_config) -> None:
    class BrokenPlatform:
        def list(self, *args, **kwargs):
            raise PlatformError("offline")

    browser = FileTreeBrowser(BrokenPlatform(), temp_config.bucket)

    assert browser.refresh() == []


def test_upload_and_create_folder_use_current_path(platform, temp_config) -> None:
    browser = _browser(platform, temp_config)
    browser.current_path = "docs"

    uploaded = browser.upload("notes.md", b"# hi", content_type="text/markdown")
    created = browser.create_folder("drafts")

    assert uploaded.message == "File uploaded successfully"
    assert uploaded.details["path"] == "docs/notes.md"
    assert created.message == "Folder created successfully"
    assert platform.download(temp_config.bucket, "docs/drafts/.keep") == b""
    assert browser.upload("notes.md", b"again").error == "Failed to upload file"
    assert browser.create_folder("  ").error == "Failed to create folder"


def test_rename_file_and_folder(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "docs/a.txt", b"a")
    platform.upload(bucket, "docs/sub/b.txt", b"b")
    browser = _browser(platform, temp_config)

    result = browser.rename(browser.locate("docs/a.txt"), "c.txt")
    assert result.message == "a.txt renamed to c.txt"
    assert platform.download(bucket, "docs/c.txt") == b"a"

    result = browser.rename(browser.locate("docs"), "papers")
    assert result.success
    assert platform.download(bucket, "papers/c.txt") == b"a"
    assert platform.download(bucket, "papers/sub/b.txt") == b"b"
    assert [node.name for node in browser.root] == ["papers"]

    failed = browser.rename(browser.locate("papers"), "bad/name")
    assert not failed.success
    assert failed.error.startswith("Failed to rename papers")


def test_delete_folder_removes_everything_below(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "docs/a.txt", b"a")
    platform.upload(bucket, "docs/sub/b.txt", b"b")
    platform.upload(bucket, "keep.txt", b"k")
    browser = _browser(platform, temp_config)
    browser.refresh()
    browser.select(browser.locate("docs/sub/b.txt"))

    result = browser.delete(browser.locate("docs"))

    assert result.message == "docs deleted successfully"
    assert result.details["removed"] == 2
    assert browser.selected is None
    assert [entry.name for entry in platform.list(bucket)] == ["keep.txt"]


def test_move_into_folder(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "a.txt", b"a")
    platform.upload(bucket, "archive/.keep", b"")
    browser = _browser(platform, temp_config)

    result = browser.move(browser.locate("a.txt"), browser.locate("archive"))

    assert result.message == "Item moved successfully"
    assert platform.download(bucket, "archive/a.txt") == b"a"


def test_move_rejects_file_destination_and_self_nesting(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "a.txt", b"a")
    platform.upload(bucket, "docs/sub/b.txt", b"b")
    browser = _browser(platform, temp_config)

    assert not browser.move(browser.locate("docs"), browser.locate("a.txt")).success
    assert not browser.move(browser.locate("docs"), browser.locate("docs/sub")).success
    assert platform.download(bucket, "docs/sub/b.txt") == b"b"


def test_preview_by_file_type(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "pic.PNG", _png_bytes())
    platform.upload(bucket, "notes.md", "héllo".encode("utf-8"))
    platform.upload(bucket, "report.pdf", b"%PDF")
    browser = _browser(platform, temp_config)

    image = browser.preview(browser.locate("pic.PNG"))
    assert image.kind == "image"
    assert image.mimetype == "image/png"
    assert (image.width, image.height) == (3, 2)

    text = browser.preview(browser.locate("notes.md"))
    assert text.kind == "text" and text.text == "héllo"

    other = browser.preview(browser.locate("report.pdf"))
    assert other.kind == "unsupported" and other.error == UNSUPPORTED_FORMAT

    missing = browser.preview(TreeNode("gone.txt", "gone.txt", False, "gone.txt"))
    assert missing.kind == "error" and missing.error == LOAD_FAILED


def test_locate_returns_none_for_missing_paths(platform, temp_config) -> None:
    browser = _browser(platform, temp_config)

    assert browser.locate("") is None
    assert browser.locate("nowhere/file.txt") is None


def _listing():
    return [
        StorageObject("a/b.txt", metadata={"mimetype": "text/plain"}),
        StorageObject("a/c/d.txt", metadata={"mimetype": "text/plain"}),
    ]


def test_build_tree_shape_for_nested_paths() -> None:
    tree = build_tree(_listing())

    assert len(tree) == 1
    root = tree[0]
    assert (root.name, root.is_folder) == ("a", True)
    assert [(child.name, child.is_folder) for child in root.children] == [("b.txt", False), ("c", True)]
    nested = root.children[1].children
    assert [(child.name, child.is_folder, child.path) for child in nested] == [("d.txt", False, "a/c/d.txt")]


def test_build_tree_is_idempotent() -> None:
    first = [node.to_dict() for node in build_tree(_listing())]
    second = [node.to_dict() for node in build_tree(_listing())]

    assert first == second


class _ListingFailsPlatform:
    """Wrap a platform so listing one prefix raises."""

    def __init__(self, inner, failing_prefix: str) -> None:
        self._inner = inner
        self._failing_prefix = failing_prefix

    def list(self, bucket, prefix="", **kwargs):
        if prefix == self._failing_prefix:
            raise PlatformError("listing timed out")
        return self._inner.list(bucket, prefix, **kwargs)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def test_folder_mutations_fail_when_listing_fails(platform, temp_config) -> None:
    bucket = temp_config.bucket
    platform.upload(bucket, "docs/a.txt", b"a")
    platform.upload(bucket, "archive/.keep", b"")
    browser = FileTreeBrowser(_ListingFailsPlatform(platform, "docs"), bucket)
    docs = TreeNode("docs", "docs", True, "docs")
    archive = TreeNode("archive", "archive", True, "archive")

    deleted = browser.delete(docs)
    renamed = browser.rename(docs, "papers")
    moved = browser.move(docs, archive)

    assert not deleted.success
    assert deleted.error == "Failed to delete docs: listing timed out"
    assert not renamed.success
    assert renamed.error == "Failed to rename docs: listing timed out"
    assert not moved.success
    assert moved.error == "Failed to move item"
    assert platform.download(bucket, "docs/a.txt") == b"a"
