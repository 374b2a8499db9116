"""Eligible file suffixes.

The eligible set is the union of the suffixes the server supports out of the
box and the ones the user configured. It decides whether the status indicator
considers a document, and it is the source of the session's document
selector. The selector is captured when the session starts: changing the
configured suffixes takes effect only after a restart.
"""

from __future__ import annotations

import os
from typing import Iterable, List, Sequence, Tuple

from ..lsp.protocol import DocumentFilter

DEFAULT_FILE_SUFFIXES: Tuple[str, ...] = (".js", ".jsx", ".ts", ".tsx", ".vue")


def union_suffixes(defaults: Iterable[str], configured: Iterable[str]) -> Tuple[str, ...]:
    """Ordered union: defaults first, then new configured suffixes, no duplicates."""
    result: List[str] = []
    for suffix in [*defaults, *configured]:
        if suffix not in result:
            result.append(suffix)
    return tuple(result)


class EligibleSuffixes:
    """Default suffixes plus the configured ones."""

    def __init__(self, configured: Sequence[str] = (), defaults: Sequence[str] = DEFAULT_FILE_SUFFIXES):
        self.defaults: Tuple[str, ...] = tuple(defaults)
        self.configured: Tuple[str, ...] = tuple(configured)
        self.supported = union_suffixes(self.defaults, self.configured)

    def update(self, configured: Sequence[str]) -> bool:
        """Recompute from new configured suffixes; True if they changed."""
        configured = tuple(configured)
        changed = configured != self.configured
        self.configured = configured
        self.supported = union_suffixes(self.defaults, configured)
        return changed

    def contains(self, file_name: str) -> bool:
        return os.path.splitext(file_name)[1] in self.supported

    def document_selector(self) -> List[DocumentFilter]:
        return [DocumentFilter(scheme="file", pattern=f"**/*{suffix}") for suffix in self.supported]
