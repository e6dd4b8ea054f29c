"""Per-block storage: memory-mapped block files and block handles.

A block file is written with ``torch.save`` and holds a small dict:

    {
        "format": "symd-block",
        "blocks": {"data_1_2": <2-D tensor>},
        "row_labels": [...] or None,
        "col_labels": [...] or None,
    }

The ``blocks`` entry declares the stored block explicitly. It must hold exactly
one tensor; anything else is ambiguous and rejected on load. Files are
reopened with ``torch.load(mmap=True)`` so block contents are paged in from
disk on access instead of being read eagerly.
"""

import logging
import os
import pickle
from dataclasses import dataclass, field
from typing import List, NamedTuple, Optional, Sequence, Tuple

import torch
from torch import Tensor

from ..errors import AmbiguityError, StorageError

logger = logging.getLogger(__name__)

BLOCK_FORMAT = "symd-block"


class BlockPayload(NamedTuple):
    """Contents of one block file."""

    name: str
    tensor: Tensor
    row_labels: Optional[List[str]]
    col_labels: Optional[List[str]]


def _as_labels(labels: Optional[Sequence[str]]) -> Optional[List[str]]:
    if labels is None:
        return None
    return [str(label) for label in labels]


@dataclass
class BlockHandle:
    """Handle on one rectangular block of a symmetric matrix.

    The handle knows the block's shape and labels without touching the
    storage. File-backed handles open their tensor lazily on first access and
    keep it resident (memory-mapped) until ``close()``.

    Attributes:
        shape: Shape of the block, (rows, cols) for a valid block
        path: File path relative to ``base_dir`` (None for in-memory blocks)
        base_dir: Directory ``path`` is resolved against
        row_labels: Optional row labels
        col_labels: Optional column labels
        mmap: Memory-map the file when opening

    Example:
        >>> handle = BlockHandle.from_tensor(torch.eye(3))
        >>> handle.read_element(2, 2)
        1.0
    """

    shape: Tuple[int, ...]
    path: Optional[str] = None
    base_dir: Optional[str] = None
    row_labels: Optional[List[str]] = None
    col_labels: Optional[List[str]] = None
    mmap: bool = True
    _tensor: Optional[Tensor] = field(default=None, repr=False, compare=False)

    @classmethod
    def from_tensor(
        cls,
        tensor: Tensor,
        row_labels: Optional[Sequence[str]] = None,
        col_labels: Optional[Sequence[str]] = None,
    ) -> "BlockHandle":
        """Wrap an in-memory tensor as a block."""
        return cls(
            shape=tuple(tensor.shape),
            row_labels=_as_labels(row_labels),
            col_labels=_as_labels(col_labels),
            _tensor=tensor,
        )

    @property
    def rows(self) -> int:
        return self.shape[0]

    @property
    def cols(self) -> int:
        return self.shape[1]

    @property
    def file_backed(self) -> bool:
        return self.path is not None

    @property
    def full_path(self) -> Optional[str]:
        """Path of the block file resolved against ``base_dir``."""
        if self.path is None:
            return None
        if self.base_dir is None:
            return self.path
        return os.path.join(self.base_dir, self.path)

    @property
    def is_open(self) -> bool:
        return self._tensor is not None

    @property
    def tensor(self) -> Tensor:
        return self.open()

    def open(self) -> Tensor:
        """Return the block tensor, opening the backing file if needed.

        Raises:
            StorageError: If the file cannot be read, its shape differs from
                the recorded one, or an in-memory block was closed
        """
        if self._tensor is not None:
            return self._tensor

        if self.path is None:
            raise StorageError("in-memory block has been closed and cannot be reopened")

        payload = read_block_file(self.full_path, mmap=self.mmap)
        if tuple(payload.tensor.shape) != tuple(self.shape):
            raise StorageError(
                f"{self.full_path}: stored block shape {tuple(payload.tensor.shape)} "
                f"doesn't match expected {tuple(self.shape)}"
            )
        self._tensor = payload.tensor
        return self._tensor

    def close(self) -> None:
        """Release the tensor (unmapping the file once no views remain)."""
        self._tensor = None

    def read_element(self, row: int, col: int) -> float:
        """Read one cell at 1-based local coordinates."""
        return self.tensor[row - 1, col - 1].item()

    def read_elements(self, rows: Tensor, cols: Tensor) -> Tensor:
        """Gather cells at paired 1-based local coordinates."""
        return self.tensor[rows - 1, cols - 1]

    def read_submatrix(self, row_range: Tuple[int, int], col_range: Tuple[int, int]) -> Tensor:
        """Read a contiguous submatrix.

        Args:
            row_range: Inclusive 1-based (first, last) row range
            col_range: Inclusive 1-based (first, last) column range
        """
        r0, r1 = row_range
        c0, c1 = col_range
        if not (1 <= r0 <= r1 <= self.rows and 1 <= c0 <= c1 <= self.cols):
            raise IndexError(
                f"submatrix rows {row_range}, cols {col_range} out of range "
                f"for block of shape {tuple(self.shape)}"
            )
        return self.tensor[r0 - 1:r1, c0 - 1:c1]


def write_block(
    tensor: Tensor,
    path: str,
    name: str,
    row_labels: Optional[Sequence[str]] = None,
    col_labels: Optional[Sequence[str]] = None,
) -> None:
    """Persist one block to ``path``.

    The tensor is cloned into its own contiguous storage first, so a slice of
    a larger matrix does not drag the whole source storage into the file.
    """
    payload = {
        "format": BLOCK_FORMAT,
        "blocks": {name: tensor.detach().cpu().contiguous().clone()},
        "row_labels": _as_labels(row_labels),
        "col_labels": _as_labels(col_labels),
    }
    try:
        torch.save(payload, path)
    except (OSError, RuntimeError) as exc:
        raise StorageError(f"cannot write block file {path}: {exc}") from exc
    logger.debug("wrote block %s %s to %s", name, tuple(tensor.shape), path)


def read_block_file(path: str, mmap: bool = True) -> BlockPayload:
    """Load the single block declared in a block file.

    Raises:
        StorageError: If the file is missing or unreadable
        AmbiguityError: If the file declares zero or more than one block
    """
    if not os.path.isfile(path):
        raise StorageError(f"block file {path} does not exist")

    try:
        obj = torch.load(path, map_location="cpu", mmap=mmap, weights_only=True)
    except (OSError, RuntimeError, EOFError, pickle.UnpicklingError) as exc:
        raise StorageError(f"cannot open block file {path}: {exc}") from exc

    if not isinstance(obj, dict) or obj.get("format") != BLOCK_FORMAT:
        raise AmbiguityError(f"{path} does not declare any block")

    declared = obj.get("blocks")
    if not isinstance(declared, dict):
        raise AmbiguityError(f"{path} does not declare any block")

    candidates = [(k, v) for k, v in declared.items() if isinstance(v, Tensor)]
    if len(candidates) != 1:
        raise AmbiguityError(
            f"{path} declares {len(candidates)} blocks; exactly one is required"
        )

    name, tensor = candidates[0]
    return BlockPayload(
        name=name,
        tensor=tensor,
        row_labels=_as_labels(obj.get("row_labels")),
        col_labels=_as_labels(obj.get("col_labels")),
    )


def open_block(path: str, base_dir: Optional[str] = None, mmap: bool = True) -> BlockHandle:
    """Open a block file and return a resident handle.

    Args:
        path: Block file path, relative to ``base_dir`` when given
        base_dir: Directory to resolve ``path`` against
        mmap: Memory-map the block storage

    Returns:
        BlockHandle with its tensor already opened
    """
    full_path = os.path.join(base_dir, path) if base_dir is not None else path
    payload = read_block_file(full_path, mmap=mmap)
    logger.debug("opened block %s %s from %s", payload.name, tuple(payload.tensor.shape), full_path)
    return BlockHandle(
        shape=tuple(payload.tensor.shape),
        path=path,
        base_dir=base_dir,
        row_labels=payload.row_labels,
        col_labels=payload.col_labels,
        mmap=mmap,
        _tensor=payload.tensor,
    )
