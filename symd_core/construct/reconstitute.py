"""Persisting and reopening block layouts.

Two ways back to a live BlockLayout:

- ``load_layout``: from the JSON descriptor written next to the blocks.
  Block paths are resolved against the descriptor's directory, so a layout
  folder can be moved or copied as a whole.
- ``load_blocks``: from per-block files listed in canonical order
  G11, G12, ..., G1q, G22, ..., Gqq, e.g. blocks computed on different nodes.
  Each path is resolved against its own directory.

Block files are opened eagerly, so a missing or unreadable block fails the
whole call and no partial layout is returned.
"""

import logging
import os
from typing import Any, Sequence

from ..config import SymDConfig
from ..errors import StorageError
from ..layout.block_layout import BlockLayout
from ..layout.validate import n_blocks_from_count, tri_index
from ..storage.block_store import BlockHandle, open_block
from ..storage.descriptor import (
    BlockEntry,
    LayoutDescriptor,
    read_descriptor,
    write_descriptor,
)

logger = logging.getLogger(__name__)


def save_layout(layout: BlockLayout, path: str) -> LayoutDescriptor:
    """Write a descriptor for ``layout`` to ``path``.

    Every block must be file-backed; block paths are recorded relative to
    the descriptor's directory.

    Raises:
        StorageError: If a block only exists in memory
    """
    base_dir = os.path.dirname(os.path.abspath(path))
    q = layout.n_blocks

    entries = []
    for r in range(1, q + 1):
        for c in range(r, q + 1):
            handle = layout.block(r, c)
            if not handle.file_backed:
                raise StorageError(
                    f"block ({r}, {c}) is held in memory; only file-backed layouts can be saved"
                )
            rel = os.path.relpath(os.path.abspath(handle.full_path), base_dir)
            entries.append(
                BlockEntry(
                    row=r,
                    col=c,
                    path=rel,
                    rows=handle.rows,
                    cols=handle.cols,
                    row_labels=handle.row_labels,
                    col_labels=handle.col_labels,
                )
            )

    descriptor = LayoutDescriptor(
        n_blocks=q,
        entries=entries,
        centers=layout.centers.tolist(),
        scales=layout.scales.tolist(),
        dtype=str(layout.dtype).replace("torch.", ""),
    )
    write_descriptor(descriptor, path)
    logger.info("saved layout descriptor (%d blocks) to %s", len(entries), path)
    return descriptor


def _open_entry(entry: BlockEntry, base_dir: str, mmap: bool) -> BlockHandle:
    handle = open_block(entry.path, base_dir=base_dir, mmap=mmap)
    if (handle.rows, handle.cols) != (entry.rows, entry.cols):
        raise StorageError(
            f"{handle.full_path}: block shape {(handle.rows, handle.cols)} doesn't match "
            f"descriptor shape {(entry.rows, entry.cols)}"
        )
    if entry.row_labels is not None:
        handle.row_labels = list(entry.row_labels)
    if entry.col_labels is not None:
        handle.col_labels = list(entry.col_labels)
    return handle


def load_layout(path: str, config: Any = None) -> BlockLayout:
    """Reopen a layout from its descriptor.

    Args:
        path: Path to the descriptor file
        config: SymDConfig (or dict) controlling mmap and retrieval workers

    Raises:
        StorageError: Unreadable descriptor or block, inconsistent entries, or
            a block dtype other than the recorded one
        LayoutError: If the reopened blocks do not form a valid layout
    """
    cfg = SymDConfig.from_cfg(config)
    cfg.validate()

    descriptor = read_descriptor(path)
    base_dir = os.path.dirname(os.path.abspath(path))
    q = descriptor.n_blocks

    expected = q * (q + 1) // 2
    if q < 1 or len(descriptor.entries) != expected:
        raise StorageError(
            f"{path}: {len(descriptor.entries)} block entries for {q} block rows, "
            f"expected {expected}"
        )

    slots: list = [None] * expected
    for entry in descriptor.entries:
        if not 1 <= entry.row <= entry.col <= q:
            raise StorageError(f"{path}: entry for block ({entry.row}, {entry.col}) is out of range")
        pos = tri_index(entry.row, entry.col, q)
        if slots[pos] is not None:
            raise StorageError(f"{path}: duplicate entry for block ({entry.row}, {entry.col})")
        slots[pos] = _open_entry(entry, base_dir, cfg.mmap)

    layout = BlockLayout.from_flat(
        slots,
        centers=descriptor.centers or None,
        scales=descriptor.scales or None,
        max_workers=cfg.max_workers,
    )
    stored = str(layout.dtype).replace("torch.", "")
    if stored != descriptor.dtype:
        layout.close()
        raise StorageError(
            f"{path}: blocks hold {stored} values but the descriptor records {descriptor.dtype}"
        )
    logger.info("loaded %r from %s", layout, path)
    return layout


def load_blocks(
    paths: Sequence[str],
    centers: Any = None,
    scales: Any = None,
    config: Any = None,
) -> BlockLayout:
    """Assemble a layout from per-block files in canonical order.

    Args:
        paths: q * (q + 1) / 2 block file paths, G11, ..., G1q, G22, ..., Gqq
        centers: Column centering values to attach (zeros if None)
        scales: Column scaling values to attach (ones if None)
        config: SymDConfig (or dict) controlling mmap and retrieval workers

    Raises:
        ShapeError: If the number of paths is not triangular
        AmbiguityError: If a file declares zero or several blocks
        StorageError: If a file cannot be opened
        LayoutError: If the blocks do not form a valid layout
    """
    cfg = SymDConfig.from_cfg(config)
    cfg.validate()

    q = n_blocks_from_count(len(paths))
    handles = []
    for path in paths:
        full = os.path.abspath(os.fspath(path))
        handles.append(
            open_block(os.path.basename(full), base_dir=os.path.dirname(full), mmap=cfg.mmap)
        )

    layout = BlockLayout.from_flat(
        handles, centers=centers, scales=scales, max_workers=cfg.max_workers
    )
    logger.info("assembled %r from %d block files (q=%d)", layout, len(paths), q)
    return layout

