"""Block-triangular layout of a symmetric matrix.

Key components:
- BlockLayout: Validated triangular collection of blocks with retrieval
- BlockBoundary: Global index range of a block-row
- validate_layout / check_triangular_blocks: Structural validation
"""

from .block_layout import BlockBoundary, BlockLayout
from .validate import (
    ValidatedLayout,
    check_triangular_blocks,
    n_blocks_from_count,
    tri_index,
    validate_layout,
)

__all__ = [
    "BlockBoundary",
    "BlockLayout",
    "ValidatedLayout",
    "check_triangular_blocks",
    "n_blocks_from_count",
    "tri_index",
    "validate_layout",
]
