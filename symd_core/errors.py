"""Exception hierarchy for symd_core.

Every error raised by the package derives from ``SymDError`` and also from
the closest built-in exception, so callers may catch either.
"""


class SymDError(Exception):
    """Base class for all symd_core errors."""


class LayoutError(SymDError, ValueError):
    """The triangular block collection is malformed."""


class ShapeError(SymDError, ValueError):
    """Input is not square, or a file count is not a triangular number."""


class StorageError(SymDError, OSError):
    """A block or descriptor cannot be written, opened or reopened."""


class AmbiguityError(SymDError, ValueError):
    """A per-block file does not declare exactly one block."""


class SelectorError(SymDError, IndexError):
    """A selector refers to an out-of-range or unresolved position."""


class LabelError(SymDError, LookupError):
    """A label selector was used on a matrix without labels."""
