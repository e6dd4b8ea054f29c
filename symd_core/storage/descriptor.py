"""JSON layout descriptor.

The descriptor records every stored block of a layout in canonical triangular
order, together with the centers/scales metadata. Block paths are stored
relative to the descriptor's own directory so the whole folder can be moved.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

from ..errors import StorageError

logger = logging.getLogger(__name__)

DESCRIPTOR_FORMAT = "symd-layout"
DESCRIPTOR_VERSION = 1


class BlockEntry(NamedTuple):
    """One stored block as recorded in the descriptor (1-based block coords)."""

    row: int
    col: int
    path: str
    rows: int
    cols: int
    row_labels: Optional[List[str]] = None
    col_labels: Optional[List[str]] = None


@dataclass
class LayoutDescriptor:
    """Serializable description of a block layout.

    Attributes:
        n_blocks: Number of block rows/columns (q)
        entries: q * (q + 1) / 2 block entries in canonical order
        centers: Column centering values
        scales: Column scaling values
        dtype: Name of the block dtype
    """

    n_blocks: int
    entries: List[BlockEntry]
    centers: List[float] = field(default_factory=list)
    scales: List[float] = field(default_factory=list)
    dtype: str = "float64"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "format": DESCRIPTOR_FORMAT,
            "version": DESCRIPTOR_VERSION,
            "n_blocks": self.n_blocks,
            "dtype": self.dtype,
            "blocks": [entry._asdict() for entry in self.entries],
            "centers": list(self.centers),
            "scales": list(self.scales),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<descriptor>") -> "LayoutDescriptor":
        """Parse a descriptor dict.

        Raises:
            StorageError: If the dict is not a supported layout descriptor
        """
        if not isinstance(data, dict) or data.get("format") != DESCRIPTOR_FORMAT:
            raise StorageError(f"{source} is not a layout descriptor")
        version = data.get("version")
        if version != DESCRIPTOR_VERSION:
            raise StorageError(f"{source}: unsupported descriptor version {version}")

        try:
            entries = [
                BlockEntry(
                    row=int(item["row"]),
                    col=int(item["col"]),
                    path=str(item["path"]),
                    rows=int(item["rows"]),
                    cols=int(item["cols"]),
                    row_labels=item.get("row_labels"),
                    col_labels=item.get("col_labels"),
                )
                for item in data["blocks"]
            ]
            return cls(
                n_blocks=int(data["n_blocks"]),
                entries=entries,
                centers=[float(v) for v in data.get("centers", [])],
                scales=[float(v) for v in data.get("scales", [])],
                dtype=str(data.get("dtype", "float64")),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageError(f"{source}: malformed descriptor ({exc})") from exc


def write_descriptor(descriptor: LayoutDescriptor, path: str) -> None:
    """Write ``descriptor`` as JSON to ``path``."""
    try:
        with open(path, "w") as f:
            json.dump(descriptor.to_dict(), f, indent=2)
    except OSError as exc:
        raise StorageError(f"cannot write descriptor {path}: {exc}") from exc
    logger.debug("wrote descriptor for %d blocks to %s", len(descriptor.entries), path)


def read_descriptor(path: str) -> LayoutDescriptor:
    """Read a layout descriptor from ``path``."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise StorageError(f"cannot read descriptor {path}: {exc}") from exc
    return LayoutDescriptor.from_dict(data, source=path)
