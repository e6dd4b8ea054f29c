"""Structural validation of triangular block collections.

A collection for q block rows/columns is a nested sequence

    [[G11, G12, ..., G1q], [G22, ..., G2q], ..., [Gqq]]

where row r holds q - r + 1 blocks starting at the diagonal. Validation
rules:
    - q >= 1
    - row r holds exactly q - r + 1 blocks
    - every block is 2-D
    - blocks in one block-row share a row count, blocks in one block-column
      share a column count
    - every non-final block is square (a sole block must be square too)

Validated blocks are stored flat in canonical order and addressed with
``tri_index``.
"""

import math
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

import torch
from torch import Tensor

from ..errors import LayoutError, ShapeError


def tri_index(row: int, col: int, n_blocks: int) -> int:
    """Position of block (row, col) in the flat canonical order.

    Args:
        row: 1-based block row
        col: 1-based block column, ``row <= col <= n_blocks``
        n_blocks: Number of block rows/columns (q)

    Returns:
        0-based position in [G11, ..., G1q, G22, ..., Gqq]

    Example:
        >>> [tri_index(r, c, 3) for r in (1, 2, 3) for c in range(r, 4)]
        [0, 1, 2, 3, 4, 5]
    """
    r = row - 1
    return r * n_blocks - (r * (r - 1)) // 2 + (col - row)


def n_blocks_from_count(count: int) -> int:
    """Infer q from a block count of q * (q + 1) / 2.

    Raises:
        ShapeError: If ``count`` is not a positive triangular number
    """
    disc = 1 + 8 * count
    root = math.isqrt(disc) if count > 0 else 0
    if count < 1 or root * root != disc:
        raise ShapeError(
            f"{count} blocks cannot form a triangular layout; "
            "expected q * (q + 1) / 2 blocks for some q >= 1"
        )
    return (root - 1) // 2


def rows_from_flat(blocks: Sequence[Any]) -> List[List[Any]]:
    """Split a canonical flat block sequence into triangular rows."""
    n_blocks = n_blocks_from_count(len(blocks))
    rows = []
    for r in range(1, n_blocks + 1):
        start = tri_index(r, r, n_blocks)
        rows.append(list(blocks[start:start + n_blocks - r + 1]))
    return rows


def check_triangular_blocks(rows: Sequence[Sequence[Any]]) -> Tuple[bool, Optional[str]]:
    """Check the structural rules in a single pass.

    Returns:
        Tuple of (is_valid, error_message or None)
    """
    n_blocks = len(rows)
    if n_blocks == 0:
        return False, "data needs to contain at least one block"

    blocks_per_row = [len(row) for row in rows]
    if blocks_per_row != list(range(n_blocks, 0, -1)):
        return False, (
            f"blocks per row {blocks_per_row} don't match expected "
            f"{list(range(n_blocks, 0, -1))}; data needs to be nested as "
            "[[G11, G12, ..., G1q], [G22, ..., G2q], ..., [Gqq]]"
        )

    row_dims: List[Optional[int]] = [None] * n_blocks
    col_dims: List[Optional[int]] = [None] * n_blocks
    for r, row in enumerate(rows):
        for offset, block in enumerate(row):
            c = r + offset
            shape = getattr(block, "shape", None)
            if shape is None or len(shape) != 2:
                return False, (
                    f"block ({r + 1}, {c + 1}) is not matrix-like; "
                    "all blocks need to be 2-D"
                )
            n_rows, n_cols = int(shape[0]), int(shape[1])

            if row_dims[r] is None:
                row_dims[r] = n_rows
            elif n_rows != row_dims[r]:
                return False, (
                    f"block ({r + 1}, {c + 1}) has {n_rows} rows; "
                    f"all blocks in block-row {r + 1} need {row_dims[r]} rows"
                )

            if col_dims[c] is None:
                col_dims[c] = n_cols
            elif n_cols != col_dims[c]:
                return False, (
                    f"block ({r + 1}, {c + 1}) has {n_cols} columns; "
                    f"all blocks in block-column {c + 1} need {col_dims[c]} columns"
                )

    if n_blocks == 1:
        if row_dims[0] != col_dims[0]:
            return False, (
                f"the first block needs to be square, got ({row_dims[0]}, {col_dims[0]})"
            )
        return True, None

    for k in range(n_blocks - 1):
        if row_dims[k] != col_dims[k]:
            return False, (
                f"non-final blocks need to be square; diagonal block "
                f"({k + 1}, {k + 1}) is ({row_dims[k]}, {col_dims[k]})"
            )
        if col_dims[k] != col_dims[0]:
            return False, (
                f"non-final blocks need a uniform size; block-column {k + 1} "
                f"has {col_dims[k]} columns instead of {col_dims[0]}"
            )

    # The trailing block-row/column closes the matrix and may only be smaller
    last = n_blocks - 1
    if row_dims[last] != col_dims[last]:
        return False, (
            f"the final diagonal block needs to be square, got "
            f"({row_dims[last]}, {col_dims[last]})"
        )
    if col_dims[last] > col_dims[0]:
        return False, (
            f"the final block size {col_dims[last]} exceeds the block size {col_dims[0]}"
        )

    return True, None


def _metadata(values: Any, n: int, default: float, name: str) -> Tensor:
    if values is None:
        return torch.full((n,), default, dtype=torch.float64)
    out = torch.as_tensor(values, dtype=torch.float64).reshape(-1)
    if out.numel() != n:
        raise LayoutError(f"{name} needs {n} values, got {out.numel()}")
    return out


@dataclass
class ValidatedLayout:
    """Output of ``validate_layout``: flat blocks plus derived geometry."""

    n_blocks: int
    blocks: List[Any]
    row_dims: List[int]
    col_dims: List[int]
    centers: Tensor
    scales: Tensor

    @property
    def n(self) -> int:
        return sum(self.col_dims)


def validate_layout(
    rows: Sequence[Sequence[Any]],
    centers: Any = None,
    scales: Any = None,
) -> ValidatedLayout:
    """Validate a nested triangular collection.

    Args:
        rows: Nested block rows [[G11, ..., G1q], ..., [Gqq]]
        centers: n centering values (zeros if None)
        scales: n scaling values (ones if None)

    Returns:
        ValidatedLayout with blocks flattened in canonical order

    Raises:
        LayoutError: On the first violated rule
    """
    is_valid, error = check_triangular_blocks(rows)
    if not is_valid:
        raise LayoutError(error)

    n_blocks = len(rows)
    row_dims = [int(row[0].shape[0]) for row in rows]
    col_dims = [int(block.shape[1]) for block in rows[0]]
    n = sum(col_dims)

    return ValidatedLayout(
        n_blocks=n_blocks,
        blocks=[block for row in rows for block in row],
        row_dims=row_dims,
        col_dims=col_dims,
        centers=_metadata(centers, n, 0.0, "centers"),
        scales=_metadata(scales, n, 1.0, "scales"),
    )
