"""Element retrieval from a block-triangular symmetric matrix.

Retrieval of ``M[I, J]``:

1. Resolve row/column selectors to 1-based positions I and J (or paired
   positions for a flat index).
2. Pair every I[a] with every J[b] in row-major output order.
3. Mirror lower-triangle pairs (r > c) to (c, r); only the upper triangle is
   stored and M[r, c] == M[c, r].
4. Map each pair to its block and local coordinates with the uniform block
   size b: block = ceil(x / b), local = x - (block - 1) * b. Only the trailing
   block-row/column can be smaller, so this holds for every block.
5. Group pairs by block, open each touched block once and scatter its
   elements into the output.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional, Tuple

import torch
from torch import Tensor

from ..errors import SelectorError
from ..index.selectors import Selector, SelectorKind, missing_labels, resolve, resolve_flat

if TYPE_CHECKING:
    from ..layout.block_layout import BlockLayout

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    """A 2-D retrieval result together with its row/column labels.

    Attributes:
        values: Retrieved values [nI, nJ]
        row_labels: Labels of the selected rows, in request order
        col_labels: Labels of the selected columns, in request order
    """

    values: Tensor
    row_labels: Optional[List[str]] = None
    col_labels: Optional[List[str]] = None

    @property
    def shape(self) -> Tuple[int, int]:
        return tuple(self.values.shape)


def map_to_blocks(
    rows: Tensor,
    cols: Tensor,
    block_size: int,
) -> Tuple[Tensor, Tensor, Tensor, Tensor]:
    """Mirror pairs into the upper triangle and map them to block coordinates.

    Args:
        rows: 1-based row positions
        cols: 1-based column positions (paired with ``rows``)
        block_size: Size of every non-final block

    Returns:
        Tuple of (row_blocks, col_blocks, local_rows, local_cols), all 1-based

    Example:
        >>> map_to_blocks(torch.tensor([7]), torch.tensor([2]), block_size=4)
        (tensor([1]), tensor([2]), tensor([2]), tensor([3]))
    """
    upper_rows = torch.minimum(rows, cols)
    upper_cols = torch.maximum(rows, cols)
    row_blocks = torch.div(upper_rows - 1, block_size, rounding_mode="floor") + 1
    col_blocks = torch.div(upper_cols - 1, block_size, rounding_mode="floor") + 1
    local_rows = upper_rows - (row_blocks - 1) * block_size
    local_cols = upper_cols - (col_blocks - 1) * block_size
    return row_blocks, col_blocks, local_rows, local_cols


class RetrievalEngine:
    """Answers element queries against a BlockLayout.

    Args:
        layout: The layout to read from
        max_workers: Threads used to fetch distinct blocks; 1 reads them
            sequentially. Distinct blocks write disjoint output positions.
    """

    def __init__(self, layout: "BlockLayout", max_workers: int = 1):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.layout = layout
        self.max_workers = max_workers

    def gather(self, rows: Tensor, cols: Tensor) -> Tensor:
        """Read M[rows[k], cols[k]] for every paired 1-based position.

        Returns:
            1-D tensor of the same length as ``rows``
        """
        layout = self.layout
        n_blocks = layout.n_blocks
        out = torch.empty(rows.numel(), dtype=layout.dtype)
        if rows.numel() == 0:
            return out

        row_blocks, col_blocks, local_rows, local_cols = map_to_blocks(
            rows, cols, layout.block_size()
        )

        # Sort once so each block's pairs are contiguous
        keys = (row_blocks - 1) * n_blocks + (col_blocks - 1)
        order = torch.argsort(keys, stable=True)
        unique_keys, counts = torch.unique_consecutive(keys[order], return_counts=True)
        groups = torch.split(order, counts.tolist())

        def fetch(task: Tuple[int, Tensor]) -> None:
            key, idx = task
            handle = layout.block(key // n_blocks + 1, key % n_blocks + 1)
            out[idx] = handle.read_elements(local_rows[idx], local_cols[idx]).to(out.dtype)

        tasks = list(zip(unique_keys.tolist(), groups))
        logger.debug("gathering %d elements from %d blocks", rows.numel(), len(tasks))

        if self.max_workers > 1 and len(tasks) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                # list() re-raises the first worker exception
                list(executor.map(fetch, tasks))
        else:
            for task in tasks:
                fetch(task)

        return out

    def _resolve_axis(self, obj: Any) -> Tensor:
        selector = Selector.coerce(obj)
        lookup = self.layout.label_index if selector.kind is SelectorKind.LABELS else None
        positions = resolve(selector, self.layout.n, lookup)
        missing = missing_labels(selector, positions)
        if missing:
            raise SelectorError(f"labels not found: {missing}")
        return positions

    def select(self, rows: Any = None, cols: Any = None) -> Selection:
        """Retrieve the 2-D submatrix M[rows, cols] with labels.

        Raises:
            SelectorError: Out-of-range positions or unknown labels
            LabelError: Label selectors on a matrix without labels
        """
        i = self._resolve_axis(rows)
        j = self._resolve_axis(cols)
        n_i, n_j = i.numel(), j.numel()

        paired_i = i.repeat_interleave(n_j)
        paired_j = j.repeat(n_i)
        values = self.gather(paired_i, paired_j).reshape(n_i, n_j)

        # Labels follow the requested order, not the mirrored one
        return Selection(
            values,
            row_labels=self.layout.labels_at(i.tolist()),
            col_labels=self.layout.labels_at(j.tolist()),
        )

    def select_flat(self, index: Any) -> Selection:
        """Retrieve elements by flat (column-major, 1-based) index as a 1 x p row."""
        rows, cols = resolve_flat(Selector.coerce(index), self.layout.n)
        return Selection(self.gather(rows, cols).reshape(1, -1))

    def get(self, rows: Any = None, cols: Any = None, drop: bool = True) -> Tensor:
        """Retrieve M[rows, cols]; a single row or column is flattened when ``drop``."""
        return _drop(self.select(rows, cols).values, drop)

    def get_flat(self, index: Any, drop: bool = True) -> Tensor:
        """Retrieve elements by flat index; 1-D when ``drop``."""
        return _drop(self.select_flat(index).values, drop)


def _drop(values: Tensor, drop: bool) -> Tensor:
    if drop and (values.shape[0] == 1 or values.shape[1] == 1):
        return values.reshape(-1)
    return values
