"""Tree view over a flat object-store listing."""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Iterator, List, Optional

from PIL import Image, UnidentifiedImageError

from .naming import join_storage_path, replace_last_segment
from .platform import ActionResult, Platform, PlatformError, StorageObject


LOGGER = logging.getLogger(__name__)

FOLDER_PLACEHOLDER = ".keep"

_IMAGE_PATTERN = re.compile(r"\.(jpg|jpeg|png|gif)$", re.IGNORECASE)
_TEXT_PATTERN = re.compile(r"\.(txt|md|js|ts|html|css)$", re.IGNORECASE)
_IMAGE_TYPES = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "gif": "image/gif"}

UNSUPPORTED_FORMAT = "Unsupported file format"
LOAD_FAILED = "Failed to load file content"


@dataclass
class TreeNode:
    id: str
    name: str
    is_folder: bool
    path: str
    children: List["TreeNode"] = field(default_factory=list)
    is_open: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "is_folder": self.is_folder,
            "path": self.path,
            "is_open": self.is_open,
            "children": [child.to_dict() for child in self.children],
        }


@dataclass
class FilePreview:
    """Result of opening a file for display."""

    path: str
    name: str
    kind: str
    mimetype: Optional[str] = None
    text: Optional[str] = None
    data: Optional[bytes] = None
    width: Optional[int] = None
    height: Optional[int] = None
    error: Optional[str] = None

    @property
    def size(self) -> Optional[int]:
        return len(self.data) if self.data is not None else None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"path": self.path, "name": self.name, "kind": self.kind}
        if self.kind == "image":
            payload.update(
                {
                    "mimetype": self.mimetype,
                    "width": self.width,
                    "height": self.height,
                    "size": self.size,
                }
            )
        elif self.kind == "text":
            payload.update({"text": self.text, "size": self.size})
        else:
            payload["error"] = self.error
        return payload


def build_tree(items: Iterable[StorageObject], parent_path: str = "") -> List[TreeNode]:
    """Nest slash-delimited listing names into nodes rooted at *parent_path*.

    A segment is a file only when it is the last one and its entry carries a
    MIME type; every other segment becomes (or reuses) a folder node.
    """

    tree: List[TreeNode] = []
    nodes: Dict[str, TreeNode] = {}
    for item in items:
        parts = item.name.split("/")
        level = tree
        current_path = parent_path
        for index, part in enumerate(parts):
            current_path = f"{current_path}/{part}" if current_path else part
            is_file = index == len(parts) - 1 and item.mimetype is not None
            node = nodes.get(current_path)
            if node is None:
                node = TreeNode(
                    id=current_path,
                    name=part,
                    is_folder=not is_file,
                    path=current_path,
                )
                nodes[current_path] = node
                level.append(node)
            if not is_file:
                level = node.children
    return tree


def iter_nodes(nodes: Iterable[TreeNode]) -> Iterator[TreeNode]:
    for node in nodes:
        yield node
        yield from iter_nodes(node.children)


class FileTreeBrowser:
    """Browse and edit one bucket as a lazily expanded tree."""

    def __init__(self, platform: Platform, bucket: str) -> None:
        self._platform = platform
        self.bucket = bucket
        self.root: List[TreeNode] = []
        self.current_path = ""
        self.selected: Optional[TreeNode] = None

    # Listing ------------------------------------------------------------
    def fetch(self, path: str = "") -> List[StorageObject]:
        try:
            return self._platform.list(self.bucket, path, sort_by="name", ascending=True)
        except PlatformError as error:
            LOGGER.error("Error retrieving files and folders under '%s': %s", path, error)
            return []

    def listing(self, path: str = "") -> List[TreeNode]:
        path = path.strip("/")
        return build_tree(self.fetch(path), path)

    def refresh(self) -> List[TreeNode]:
        self.root = self.listing("")
        if self.selected is not None and self.find_node(self.selected.id) is None:
            self.selected = None
        return self.root

    def find_node(self, node_id: str) -> Optional[TreeNode]:
        for node in iter_nodes(self.root):
            if node.id == node_id:
                return node
        return None

    def toggle(self, node: TreeNode) -> TreeNode:
        if not node.is_folder:
            return node
        self.current_path = node.path
        if not node.children:
            node.children = self.listing(node.path)
        node.is_open = not node.is_open
        return node

    def select(self, node: TreeNode) -> Optional[TreeNode]:
        if node.is_folder:
            return self.selected
        self.selected = node
        return node

    def collect_paths(self, prefix: str) -> List[str]:
        """Return the path of every object stored under *prefix*.

        Listing failures propagate as ``PlatformError``.
        """

        paths: List[str] = []
        for entry in self._platform.list(self.bucket, prefix, sort_by="name", ascending=True):
            entry_path = join_storage_path(prefix, entry.name)
            if entry.mimetype is not None:
                paths.append(entry_path)
            else:
                paths.extend(self.collect_paths(entry_path))
        return paths

    # Mutations ----------------------------------------------------------
    def _move_objects(self, source: TreeNode, destination: str) -> None:
        if not source.is_folder:
            self._platform.move(self.bucket, source.path, destination)
            return
        for path in self.collect_paths(source.path):
            suffix = path[len(source.path):].lstrip("/")
            self._platform.move(self.bucket, path, join_storage_path(destination, suffix))

    def rename(self, node: TreeNode, new_name: str) -> ActionResult:
        new_name = (new_name or "").strip()
        if not new_name or "/" in new_name:
            return ActionResult.failed(f"Failed to rename {node.name}: invalid name '{new_name}'")
        destination = replace_last_segment(node.path, new_name)
        if destination == node.path:
            return ActionResult.ok(f"{node.name} renamed to {new_name}", path=destination)
        try:
            self._move_objects(node, destination)
        except PlatformError as error:
            LOGGER.error("Rename error for %s: %s", node.path, error)
            return ActionResult.failed(f"Failed to rename {node.name}: {error}")
        LOGGER.info("Renamed %s to %s", node.path, destination)
        self.refresh()
        return ActionResult.ok(f"{node.name} renamed to {new_name}", path=destination)

    def delete(self, node: TreeNode) -> ActionResult:
        try:
            paths = self.collect_paths(node.path) if node.is_folder else [node.path]
            if paths:
                self._platform.remove(self.bucket, paths)
        except PlatformError as error:
            LOGGER.error("Delete error for %s: %s", node.path, error)
            return ActionResult.failed(f"Failed to delete {node.name}: {error}")
        LOGGER.info("Deleted %s (%s object(s))", node.path, len(paths))
        if self.selected is not None and (
            self.selected.path == node.path or self.selected.path.startswith(node.path + "/")
        ):
            self.selected = None
        self.refresh()
        return ActionResult.ok(f"{node.name} deleted successfully", removed=len(paths))

    def move(self, source: TreeNode, destination: TreeNode) -> ActionResult:
        if not destination.is_folder:
            return ActionResult.failed("Failed to move item: destination is not a folder")
        if destination.path == source.path or destination.path.startswith(source.path + "/"):
            return ActionResult.failed("Failed to move item: cannot move a folder into itself")
        target = f"{destination.path}/{source.name}"
        try:
            self._move_objects(source, target)
        except PlatformError as error:
            LOGGER.error("Move error for %s: %s", source.path, error)
            return ActionResult.failed("Failed to move item")
        LOGGER.info("Moved %s to %s", source.path, target)
        self.refresh()
        return ActionResult.ok("Item moved successfully", path=target)

    def upload(
        self,
        filename: str,
        data: bytes,
        *,
        content_type: Optional[str] = None,
    ) -> ActionResult:
        if not filename:
            return ActionResult.failed("Failed to upload file")
        path = join_storage_path(self.current_path, filename)
        try:
            stored = self._platform.upload(self.bucket, path, data, content_type=content_type)
        except PlatformError as error:
            LOGGER.error("Upload error for %s: %s", path, error)
            return ActionResult.failed("Failed to upload file")
        self.refresh()
        return ActionResult.ok("File uploaded successfully", path=stored)

    def create_folder(self, name: str) -> ActionResult:
        name = (name or "").strip().strip("/")
        if not name:
            return ActionResult.failed("Failed to create folder")
        path = join_storage_path(self.current_path, name, FOLDER_PLACEHOLDER)
        try:
            self._platform.upload(self.bucket, path, b"", content_type="text/plain")
        except PlatformError as error:
            LOGGER.error("Folder creation error for %s: %s", path, error)
            return ActionResult.failed("Failed to create folder")
        self.refresh()
        return ActionResult.ok("Folder created successfully", path=join_storage_path(self.current_path, name))

    # Preview ------------------------------------------------------------
    def preview(self, node: TreeNode) -> FilePreview:
        try:
            data = self._platform.download(self.bucket, node.path)
        except PlatformError as error:
            LOGGER.error("Failed to download %s: %s", node.path, error)
            return FilePreview(node.path, node.name, "error", error=LOAD_FAILED)

        if _IMAGE_PATTERN.search(node.name):
            extension = node.name.rsplit(".", 1)[-1].lower()
            preview = FilePreview(
                node.path,
                node.name,
                "image",
                mimetype=_IMAGE_TYPES[extension],
                data=data,
            )
            try:
                with Image.open(io.BytesIO(data)) as image:
                    preview.width, preview.height = image.size
            except (UnidentifiedImageError, OSError) as error:
                LOGGER.debug("Could not read image dimensions for %s: %s", node.path, error)
            return preview
        if _TEXT_PATTERN.search(node.name):
            return FilePreview(
                node.path,
                node.name,
                "text",
                mimetype="text/plain",
                text=data.decode("utf-8", errors="replace"),
                data=data,
            )
        return FilePreview(node.path, node.name, "unsupported", error=UNSUPPORTED_FORMAT)

    def locate(self, path: str) -> Optional[TreeNode]:
        """Return a node for *path* by listing its parent, or ``None`` if absent."""

        path = path.strip("/")
        if not path:
            return None
        node = self.find_node(path)
        if node is not None:
            return node
        parent, _, name = path.rpartition("/")
        for entry in self.fetch(parent):
            if entry.name == name:
                return TreeNode(id=path, name=name, is_folder=entry.mimetype is None, path=path)
        return None


__all__ = [
    "FOLDER_PLACEHOLDER",
    "FilePreview",
    "FileTreeBrowser",
    "LOAD_FAILED",
    "TreeNode",
    "UNSUPPORTED_FORMAT",
    "build_tree",
    "iter_nodes",
]
