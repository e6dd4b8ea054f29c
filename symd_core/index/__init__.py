"""Row/column selectors and their resolution to 1-based positions."""

from .selectors import (
    MISSING,
    Selector,
    SelectorKind,
    label_lookup,
    missing_labels,
    resolve,
    resolve_flat,
)

__all__ = [
    "MISSING",
    "Selector",
    "SelectorKind",
    "label_lookup",
    "missing_labels",
    "resolve",
    "resolve_flat",
]
