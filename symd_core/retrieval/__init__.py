"""Element retrieval with lower-triangle mirroring and per-block grouping."""

from .engine import RetrievalEngine, Selection, map_to_blocks

__all__ = [
    "RetrievalEngine",
    "Selection",
    "map_to_blocks",
]
