"""Partition a symmetric matrix into persisted triangular blocks.

The source is split into ceil(n / block_size) block rows/columns; only blocks
on or above the diagonal are written, one file per block, named
``data_<r>_<c>.<ext>`` with r and c zero-padded to the digit count of q so
file names sort in canonical order. A descriptor is written next to the
blocks for ``load_layout``.
"""

import logging
import math
import os
import random
import string
import warnings
from dataclasses import replace
from typing import Any, List, Optional, Sequence, Union

import torch
from torch import Tensor

from ..config import SymDConfig
from ..errors import ShapeError, StorageError
from ..layout.block_layout import BlockBoundary, BlockLayout
from ..storage.block_store import BlockHandle, write_block
from .reconstitute import save_layout

logger = logging.getLogger(__name__)

Source = Union[Tensor, BlockHandle, BlockLayout]

# Sentinel: take block_size from the config
_FROM_CONFIG = object()


def random_folder_name(length: int = 10) -> str:
    """Random alphanumeric folder name."""
    return "".join(random.choices(string.digits + string.ascii_letters, k=length))


def block_file_name(row: int, col: int, n_blocks: int, extension: str = "pt") -> str:
    """File name for block (row, col), zero-padded to the digit count of ``n_blocks``.

    Example:
        >>> block_file_name(2, 10, 12)
        'data_02_10.pt'
    """
    width = len(str(n_blocks))
    return f"data_{row:0{width}d}_{col:0{width}d}.{extension}"


def block_boundaries(n: int, block_size: int) -> List[BlockBoundary]:
    """Greedy partition of 1..n into ranges of ``block_size``; the last may be shorter.

    Example:
        >>> [tuple(b) for b in block_boundaries(10, 4)]
        [(1, 1, 4), (2, 5, 8), (3, 9, 10)]
    """
    n_blocks = math.ceil(n / block_size)
    bounds = [BlockBoundary(1, 1, min(n, block_size))]
    for i in range(2, n_blocks + 1):
        ini = bounds[-1].end + 1
        bounds.append(BlockBoundary(i, ini, min(ini + block_size - 1, n)))
    return bounds


def _source_shape(source: Source):
    if isinstance(source, (Tensor, BlockHandle, BlockLayout)):
        return tuple(source.shape)
    raise TypeError(
        f"source must be a tensor, BlockHandle or BlockLayout, got {type(source).__name__}"
    )


def _slice_source(source: Source, rows: BlockBoundary, cols: BlockBoundary) -> Tensor:
    if isinstance(source, BlockLayout):
        return source.get(
            range(rows.ini, rows.end + 1), range(cols.ini, cols.end + 1), drop=False
        )
    if isinstance(source, BlockHandle):
        return source.read_submatrix((rows.ini, rows.end), (cols.ini, cols.end))
    return source[rows.ini - 1:rows.end, cols.ini - 1:cols.end]


def _source_labels(source: Source, row_labels, col_labels):
    if isinstance(source, BlockLayout):
        labels = source.labels()
        return (row_labels if row_labels is not None else labels,
                col_labels if col_labels is not None else labels)
    if isinstance(source, BlockHandle):
        return (row_labels if row_labels is not None else source.row_labels,
                col_labels if col_labels is not None else source.col_labels)
    return row_labels, col_labels


def _check_labels(labels: Optional[Sequence[str]], n: int, name: str) -> Optional[List[str]]:
    if labels is None:
        return None
    labels = [str(label) for label in labels]
    if len(labels) != n:
        raise ShapeError(f"{name} needs {n} labels, got {len(labels)}")
    return labels


def _is_symmetric(source: Source) -> bool:
    if isinstance(source, BlockLayout):
        return True
    tensor = source.tensor if isinstance(source, BlockHandle) else source
    return torch.allclose(tensor, tensor.T)


def build_layout(
    source: Source,
    folder: Optional[str] = None,
    block_size: Any = _FROM_CONFIG,
    config: Any = None,
    row_labels: Optional[Sequence[str]] = None,
    col_labels: Optional[Sequence[str]] = None,
    centers: Any = None,
    scales: Any = None,
) -> BlockLayout:
    """Split a symmetric matrix into blocks persisted under ``folder``.

    Args:
        source: Square matrix: a 2-D tensor, a (memory-mapped) BlockHandle,
            or an existing BlockLayout to re-block
        folder: Output folder; must not exist. A random name in the current
            directory is used if None.
        block_size: Rows/columns per block, None for a single block.
            Defaults to ``config.block_size``.
        config: SymDConfig (or dict) with dtype, file extension, descriptor
            name and retrieval settings
        row_labels: Row labels of the source (taken from the source if it
            carries labels)
        col_labels: Column labels of the source
        centers: Column centering values (zeros if None)
        scales: Column scaling values (ones if None)

    Returns:
        BlockLayout over the written blocks

    Raises:
        ShapeError: If the source is not a square matrix
        StorageError: If ``folder`` already exists or a file cannot be written

    Example:
        >>> x = torch.randn(10, 3)
        >>> layout = build_layout(x @ x.T, folder="G", block_size=4)
        >>> layout.n_blocks, layout.block_size(), layout.block_size(last=True)
        (3, 4, 2)
    """
    cfg = SymDConfig.from_cfg(config)
    if block_size is not _FROM_CONFIG:
        cfg = replace(cfg, block_size=block_size)
    cfg.validate()

    shape = _source_shape(source)
    if len(shape) != 2 or shape[0] != shape[1]:
        raise ShapeError(f"source must be a square matrix, got shape {shape}")
    n = shape[0]
    if n == 0:
        raise ShapeError("source must have at least one row")

    if cfg.check_symmetry and not _is_symmetric(source):
        warnings.warn("source matrix is not symmetric; its lower triangle will be discarded")

    row_labels, col_labels = _source_labels(source, row_labels, col_labels)
    row_labels = _check_labels(row_labels, n, "row_labels")
    col_labels = _check_labels(col_labels, n, "col_labels")

    if folder is None:
        folder = random_folder_name()
    if os.path.exists(folder):
        raise StorageError(f"{folder} already exists")
    try:
        os.makedirs(folder)
    except OSError as exc:
        raise StorageError(f"cannot create {folder}: {exc}") from exc
    base_dir = os.path.abspath(folder)

    size = cfg.block_size if cfg.block_size is not None else n
    bounds = block_boundaries(n, size)
    n_blocks = len(bounds)
    dtype = cfg.torch_dtype

    handles = []
    for rb in bounds:
        for cb in bounds[rb.block - 1:]:
            file_name = block_file_name(rb.block, cb.block, n_blocks, cfg.block_extension)
            values = _slice_source(source, rb, cb).to(dtype)
            block_rows = None if row_labels is None else row_labels[rb.ini - 1:rb.end]
            block_cols = None if col_labels is None else col_labels[cb.ini - 1:cb.end]
            write_block(
                values,
                os.path.join(base_dir, file_name),
                name=file_name.rsplit(".", 1)[0],
                row_labels=block_rows,
                col_labels=block_cols,
            )
            handles.append(
                BlockHandle(
                    shape=tuple(values.shape),
                    path=file_name,
                    base_dir=base_dir,
                    row_labels=block_rows,
                    col_labels=block_cols,
                    mmap=cfg.mmap,
                )
            )

    layout = BlockLayout.from_flat(
        handles, centers=centers, scales=scales, max_workers=cfg.max_workers
    )
    save_layout(layout, os.path.join(base_dir, cfg.descriptor_name))
    logger.info("built %r in %s", layout, folder)
    return layout
