"""Block storage for symd_core.

Key components:
- BlockHandle: Lazily opened, memory-mapped handle on one block
- write_block / open_block: Per-block file persistence
- LayoutDescriptor: JSON description of a whole layout
"""

from .block_store import (
    BLOCK_FORMAT,
    BlockHandle,
    BlockPayload,
    open_block,
    read_block_file,
    write_block,
)
from .descriptor import (
    BlockEntry,
    LayoutDescriptor,
    read_descriptor,
    write_descriptor,
)

__all__ = [
    # Block files
    "BLOCK_FORMAT",
    "BlockHandle",
    "BlockPayload",
    "open_block",
    "read_block_file",
    "write_block",
    # Descriptor
    "BlockEntry",
    "LayoutDescriptor",
    "read_descriptor",
    "write_descriptor",
]
