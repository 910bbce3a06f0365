"""
Path normalization for traversal detection.

Paths are resolved purely lexically: no filesystem access, no symlinks.
The normalized form is only ever used for containment checks.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class PathInfo:
    """Normalization result for one path-like argument."""

    original: str
    normalized: str
    has_traversal: bool = False
    is_absolute: bool = False


def normalize_path(path: str) -> PathInfo:
    """Resolve ~, . and .. segments into an absolute-style path.

    /a/b/c/../../d -> /a/d. Popping past the root is a no-op, and relative
    input still comes out rooted at /.
    """
    if not path:
        return PathInfo(original=path, normalized=path)

    expanded = path
    if expanded.startswith("~"):
        expanded = str(Path.home()) + expanded[1:]

    resolved: list[str] = []
    for segment in expanded.split("/"):
        if segment == "..":
            if resolved:
                resolved.pop()
        elif segment and segment != ".":
            resolved.append(segment)

    return PathInfo(
        original=path,
        normalized="/" + "/".join(resolved),
        has_traversal=".." in path,
        is_absolute=path.startswith(("/", "~")),
    )
