"""
Synthetic directory listings built from a flat manifest.

Object stores such as gypsum (and the SewerRat index) expose a flat list of
file paths under a dataset root rather than a directory-listing endpoint.
``ManifestListing`` splits each path on ``/`` to answer "what is inside this
directory" queries.
"""

from __future__ import annotations

from typing import Iterable

from scremote.core.errors import MalformedListingError


class ManifestListing:
    """
    Hierarchical view over a flat list of relative file paths.

    Example:
        >>> listing = ManifestListing("proj/asset/v1", ["OBJECT", "assays/0/OBJECT"])
        >>> listing.list("proj/asset/v1")
        ['OBJECT', 'assays']
        >>> listing.list("proj/asset/v1/assays")
        ['0']
    """

    def __init__(self, root: str, paths: Iterable[str]):
        """
        Build the listing.

        Args:
            root: Path of the directory the manifest entries are relative to.
            paths: Relative file paths.
        """
        self.root = root.strip("/")
        self._contents: dict[str, dict[str, None]] = {}
        self._files: set[str] = set()

        for path in paths:
            components = [c for c in path.split("/") if c]
            if not components:
                continue
            step = self.root
            for component in components:
                # dict keys keep first-seen order while deduplicating
                self._contents.setdefault(step, {})[component] = None
                step = self._join(step, component)
            self._files.add(step)

    @staticmethod
    def _join(left: str, right: str) -> str:
        return f"{left}/{right}" if left else right

    def list(self, path: str) -> list[str]:
        """
        List the immediate children of a directory.

        Raises:
            MalformedListingError: If ``path`` is not a directory in the manifest.
        """
        key = path.strip("/")
        if key not in self._contents:
            raise MalformedListingError(key)
        return list(self._contents[key])

    def is_directory(self, path: str) -> bool:
        return path.strip("/") in self._contents

    def is_file(self, path: str) -> bool:
        return path.strip("/") in self._files

    def has_child(self, path: str, child: str) -> bool:
        """Whether ``child`` is listed inside ``path``; False if ``path`` is unknown."""
        return child in self._contents.get(path.strip("/"), {})

    def __len__(self) -> int:
        return len(self._files)
