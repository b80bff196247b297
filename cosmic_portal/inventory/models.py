"""Inventory snapshot types."""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class InventoryNode:
    """
    One entry of the remote file tree.

    Snapshots are immutable; a refetch builds a new tree rather than
    patching this one.
    """
    name: str
    is_directory: bool
    children: Tuple['InventoryNode', ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: Any) -> 'InventoryNode':
        """Parses the backend's recursive ``{name, isDir, children?}`` shape."""
        if not isinstance(data, dict):
            raise ValueError(f"tree node must be an object, got {type(data).__name__}")
        name = data.get("name")
        if not isinstance(name, str):
            raise ValueError("tree node is missing a name")
        is_dir = data.get("isDir", False)
        if not isinstance(is_dir, bool):
            raise ValueError(f"isDir of {name!r} is not a boolean")
        raw_children = data.get("children") or []
        if not isinstance(raw_children, list):
            raise ValueError(f"children of {name!r} is not a list")
        return cls(
            name=name,
            is_directory=is_dir,
            children=tuple(cls.from_dict(child) for child in raw_children),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"name": self.name, "isDir": self.is_directory}
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        return data

    def walk(self) -> Iterator['InventoryNode']:
        """Pre-order traversal, children in input order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def leaf_names(self) -> List[str]:
        """Names of every non-directory node, in traversal order."""
        return [node.name for node in self.walk() if not node.is_directory]

    def render(self, indent: str = "  ") -> str:
        """Indented text view of the tree."""
        lines: List[str] = []

        def _render(node: 'InventoryNode', depth: int) -> None:
            suffix = "/" if node.is_directory else ""
            lines.append(f"{indent * depth}{node.name}{suffix}")
            for child in node.children:
                _render(child, depth + 1)

        _render(self, 0)
        return "\n".join(lines)


@dataclass(frozen=True)
class SaveResult:
    """Answer from ``POST /api/save-file``."""
    filename: str
    size_bytes: int
    path: Optional[str] = None

    @classmethod
    def from_response(cls, data: Any, filename: str, size: int) -> 'SaveResult':
        if not isinstance(data, dict):
            return cls(filename=filename, size_bytes=size)
        return cls(
            filename=str(data.get("filename") or filename),
            size_bytes=int(data.get("size", size)),
            path=data.get("path"),
        )


__all__ = ["InventoryNode", "SaveResult"]
