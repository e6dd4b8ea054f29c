"""Building, persisting and reopening block layouts.

Key components:
- build_layout: Split a symmetric matrix into persisted triangular blocks
- save_layout: Write a JSON descriptor for a file-backed layout
- load_layout: Reopen a layout from its descriptor
- load_blocks: Assemble a layout from per-block files
"""

from .builder import block_boundaries, block_file_name, build_layout
from .reconstitute import load_blocks, load_layout, save_layout

__all__ = [
    "block_boundaries",
    "block_file_name",
    "build_layout",
    "load_blocks",
    "load_layout",
    "save_layout",
]
