"""Symmetric matrix stored as diagonal and upper-triangular blocks.

A BlockLayout partitions an n x n symmetric matrix into q x q blocks and
keeps only the q * (q + 1) / 2 blocks on or above the diagonal:

    [ G11 G12 G13 ]
    [  .  G22 G23 ]   =>  [G11, G12, G13, G22, G23, G33]
    [  .   .  G33 ]

Blocks live in a flat list in that canonical order and are addressed with
``tri_index``. All blocks have the same size except the trailing block-row
and block-column, which may be smaller. The layout is validated once on
construction and read-only afterwards.
"""

from typing import Any, Dict, List, NamedTuple, Optional, Sequence, Tuple

import torch
from torch import Tensor

from ..errors import LayoutError
from ..index.selectors import label_lookup
from ..retrieval.engine import RetrievalEngine, Selection
from ..storage.block_store import BlockHandle
from .validate import rows_from_flat, tri_index, validate_layout


class BlockBoundary(NamedTuple):
    """Global 1-based index range [ini, end] covered by a block-row."""

    block: int
    ini: int
    end: int


def _as_handle(block: Any) -> Any:
    if isinstance(block, Tensor):
        return BlockHandle.from_tensor(block)
    return block


class BlockLayout:
    """
    Block-triangular symmetric matrix.

    Behaves like an n x n matrix for retrieval: ``get`` and ``select`` take
    1-based positions, boolean masks or labels for each axis, and lower
    triangle requests are served from the mirrored upper triangle.

    Args:
        rows: Nested block rows [[G11, ..., G1q], [G22, ..., G2q], ..., [Gqq]].
            Blocks are BlockHandles or 2-D tensors.
        centers: Values used for column centering before the matrix was
            computed (zeros if None)
        scales: Values used for column scaling (ones if None)
        max_workers: Threads used to fetch distinct blocks during retrieval

    Raises:
        LayoutError: If the block collection is malformed

    Example:
        >>> m = torch.arange(16.0).reshape(4, 4)
        >>> m = m + m.T
        >>> layout = BlockLayout([[m[:2, :2], m[:2, 2:]], [m[2:, 2:]]])
        >>> layout.shape
        (4, 4)
        >>> layout.get(4, 1).item() == m[3, 0].item()
        True
    """

    def __init__(
        self,
        rows: Sequence[Sequence[Any]],
        centers: Any = None,
        scales: Any = None,
        max_workers: int = 1,
    ):
        rows = [[_as_handle(block) for block in row] for row in rows]
        validated = validate_layout(rows, centers, scales)

        self._blocks: List[BlockHandle] = validated.blocks
        self._n_blocks = validated.n_blocks
        self._sizes = validated.col_dims
        self._n = validated.n
        self.centers: Tensor = validated.centers
        self.scales: Tensor = validated.scales
        self._labels = self._diagonal_labels()
        self._label_index = None if self._labels is None else label_lookup(self._labels)
        self._engine = RetrievalEngine(self, max_workers=max_workers)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Any]], centers: Any = None,
                  scales: Any = None, max_workers: int = 1) -> "BlockLayout":
        """Create a layout from nested block rows."""
        return cls(rows, centers=centers, scales=scales, max_workers=max_workers)

    @classmethod
    def from_flat(cls, blocks: Sequence[Any], centers: Any = None,
                  scales: Any = None, max_workers: int = 1) -> "BlockLayout":
        """Create a layout from blocks in canonical order G11, ..., G1q, G22, ..., Gqq.

        Raises:
            ShapeError: If the number of blocks is not triangular
        """
        return cls(rows_from_flat(blocks), centers=centers, scales=scales, max_workers=max_workers)

    def _diagonal_labels(self) -> Optional[List[str]]:
        # Labels of the first block-row's columns, all-or-nothing
        names: List[str] = []
        for c in range(1, self._n_blocks + 1):
            col_labels = self.block(1, c).col_labels
            if col_labels is None:
                return None
            names.extend(col_labels)
        if len(names) != self._n:
            raise LayoutError(
                f"column labels cover {len(names)} columns of a {self._n} x {self._n} matrix"
            )
        return names

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def n(self) -> int:
        return self._n

    @property
    def n_blocks(self) -> int:
        """Number of block rows/columns (q)."""
        return self._n_blocks

    @property
    def shape(self) -> Tuple[int, int]:
        return (self._n, self._n)

    @property
    def is_matrix(self) -> bool:
        return True

    @property
    def blocks(self) -> List[BlockHandle]:
        """Stored blocks in canonical order (a copy of the list)."""
        return list(self._blocks)

    @property
    def dtype(self) -> torch.dtype:
        return self.block(1, 1).tensor.dtype

    def dim(self) -> Tuple[int, int]:
        return self.shape

    def __len__(self) -> int:
        return self._n * self._n

    def block(self, row: int, col: int) -> BlockHandle:
        """Stored block at 1-based block coordinates, ``row <= col``."""
        if not 1 <= row <= col <= self._n_blocks:
            raise IndexError(
                f"block ({row}, {col}) is not stored; need 1 <= row <= col <= {self._n_blocks}"
            )
        return self._blocks[tri_index(row, col, self._n_blocks)]

    def block_size(self, last: bool = False) -> int:
        """Size of the non-final blocks, or of the final block-row/column if ``last``."""
        return self._sizes[-1] if last else self._sizes[0]

    def labels(self) -> Optional[List[str]]:
        """Row/column labels, or None unless every diagonal block has column labels."""
        return None if self._labels is None else list(self._labels)

    @property
    def label_index(self) -> Optional[Dict[str, int]]:
        """Label -> first 1-based position, built once; None without labels."""
        return self._label_index

    def labels_at(self, positions: Sequence[int]) -> Optional[List[str]]:
        """Labels at 1-based ``positions``, or None without labels."""
        if self._labels is None:
            return None
        return [self._labels[p - 1] for p in positions]

    def dimnames(self) -> Optional[Tuple[List[str], List[str]]]:
        labels = self.labels()
        if labels is None:
            return None
        return labels, list(labels)

    def block_index(self) -> List[BlockBoundary]:
        """Global index range of each block-row.

        Example:
            >>> [tuple(b) for b in layout.block_index()]  # n=10, block size 4
            [(1, 1, 4), (2, 5, 8), (3, 9, 10)]
        """
        index = []
        end = 0
        for block, size in enumerate(self._sizes, start=1):
            ini = end + 1
            end = ini + size - 1
            index.append(BlockBoundary(block, ini, end))
        return index

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def get(self, rows: Any = None, cols: Any = None, drop: bool = True) -> Tensor:
        """Retrieve M[rows, cols].

        Args:
            rows: None (all), 1-based position(s), bool mask or label(s)
            cols: Same as ``rows``
            drop: Return a 1-D tensor when one row or one column is selected

        Raises:
            SelectorError: Out-of-range positions or unknown labels
            LabelError: Labels used on a matrix without labels
        """
        return self._engine.get(rows, cols, drop=drop)

    def get_flat(self, index: Any, drop: bool = True) -> Tensor:
        """Retrieve elements by 1-based, column-major flat index into the n * n matrix."""
        return self._engine.get_flat(index, drop=drop)

    def select(self, rows: Any = None, cols: Any = None) -> Selection:
        """Retrieve M[rows, cols] as a 2-D Selection carrying its labels."""
        return self._engine.select(rows, cols)

    def to_dense(self) -> Tensor:
        """Materialize the full n x n matrix in memory."""
        dense = torch.empty(self._n, self._n, dtype=self.dtype)
        bounds = self.block_index()
        for r in range(1, self._n_blocks + 1):
            row_bound = bounds[r - 1]
            for c in range(r, self._n_blocks + 1):
                col_bound = bounds[c - 1]
                handle = self.block(r, c)
                values = handle.read_submatrix((1, handle.rows), (1, handle.cols))
                rs = slice(row_bound.ini - 1, row_bound.end)
                cs = slice(col_bound.ini - 1, col_bound.end)
                dense[rs, cs] = values
                if r != c:
                    dense[cs, rs] = values.T
        return dense

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Release every block handle."""
        for handle in self._blocks:
            handle.close()

    def __enter__(self) -> "BlockLayout":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        parts = [
            f"n={self._n}",
            f"n_blocks={self._n_blocks}",
            f"block_size={self.block_size()}",
        ]
        if self.block_size(last=True) != self.block_size():
            parts.append(f"last_block_size={self.block_size(last=True)}")
        if self._labels is not None:
            parts.append("labeled=True")
        return f"BlockLayout({', '.join(parts)})"
