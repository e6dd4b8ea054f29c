"""symd: Symmetric matrices partitioned into memory-mapped blocks.

Very large symmetric matrices (e.g. genomic relationship matrices on large
cohorts) are split into blocks, and only the diagonal and upper-triangular
blocks are stored, one memory-mapped file each. A BlockLayout behaves like
an ordinary n x n matrix for retrieval by position, mask or label.

Version: 0.1.0
License: MIT
"""

__version__ = "0.1.0"

# Import config and errors
from .config import SymDConfig, SUPPORTED_DTYPES
from .errors import (
    AmbiguityError,
    LabelError,
    LayoutError,
    SelectorError,
    ShapeError,
    StorageError,
    SymDError,
)

# Import storage
from .storage.block_store import BlockHandle, open_block, write_block
from .storage.descriptor import LayoutDescriptor

# Import layout and retrieval
from .index.selectors import Selector, SelectorKind
from .layout.block_layout import BlockBoundary, BlockLayout
from .retrieval.engine import RetrievalEngine, Selection

# Import construction
from .construct.builder import build_layout
from .construct.reconstitute import load_blocks, load_layout, save_layout

__all__ = [
    "__version__",
    # Config
    "SymDConfig",
    "SUPPORTED_DTYPES",
    # Errors
    "SymDError",
    "LayoutError",
    "ShapeError",
    "StorageError",
    "AmbiguityError",
    "SelectorError",
    "LabelError",
    # Storage
    "BlockHandle",
    "open_block",
    "write_block",
    "LayoutDescriptor",
    # Layout
    "Selector",
    "SelectorKind",
    "BlockBoundary",
    "BlockLayout",
    "RetrievalEngine",
    "Selection",
    # Construction
    "build_layout",
    "load_blocks",
    "load_layout",
    "save_layout",
]
