"""Tests for BlockLayout construction and geometry queries."""

import pytest
import torch

from symd_core.errors import LayoutError, ShapeError, StorageError
from symd_core.layout.block_layout import BlockBoundary, BlockLayout
from symd_core.storage.block_store import BlockHandle


def _blocks(n, block_size, labels=None):
    """Flat canonical list of labeled in-memory blocks of an n x n matrix."""
    m = torch.arange(n * n, dtype=torch.float64).reshape(n, n)
    m = m + m.T
    starts = list(range(0, n, block_size))
    blocks = []
    for r, r0 in enumerate(starts):
        for c0 in starts[r:]:
            r1, c1 = min(r0 + block_size, n), min(c0 + block_size, n)
            blocks.append(
                BlockHandle.from_tensor(
                    m[r0:r1, c0:c1],
                    row_labels=None if labels is None else labels[r0:r1],
                    col_labels=None if labels is None else labels[c0:c1],
                )
            )
    return m, blocks


class TestGeometry:
    """Dimension, block count and block sizes."""

    def test_ten_by_ten_with_block_size_four(self):
        _, blocks = _blocks(10, 4)
        layout = BlockLayout.from_flat(blocks)

        assert layout.shape == (10, 10)
        assert layout.dim() == (10, 10)
        assert layout.n_blocks == 3
        assert layout.block_size() == 4
        assert layout.block_size(last=True) == 2
        assert len(layout) == 100
        assert layout.is_matrix

    def test_last_block_size_formula(self):
        for n, b in [(7, 3), (9, 3), (11, 5), (5, 10)]:
            _, blocks = _blocks(n, b)
            layout = BlockLayout.from_flat(blocks)
            q = layout.n_blocks
            assert layout.block_size(last=True) == n - layout.block_size() * (q - 1)

    def test_block_index(self):
        _, blocks = _blocks(10, 4)
        layout = BlockLayout.from_flat(blocks)

        assert layout.block_index() == [
            BlockBoundary(1, 1, 4),
            BlockBoundary(2, 5, 8),
            BlockBoundary(3, 9, 10),
        ]

    def test_block_accessor(self):
        m, blocks = _blocks(10, 4)
        layout = BlockLayout.from_flat(blocks)

        assert torch.equal(layout.block(2, 3).tensor, m[4:8, 8:10])
        with pytest.raises(IndexError):
            layout.block(3, 2)

    def test_accepts_raw_tensors(self):
        m = torch.eye(4, dtype=torch.float64)
        layout = BlockLayout([[m[:2, :2], m[:2, 2:]], [m[2:, 2:]]])

        assert torch.equal(layout.to_dense(), m)

    def test_to_dense(self):
        m, blocks = _blocks(10, 4)
        assert torch.equal(BlockLayout.from_flat(blocks).to_dense(), m)

    def test_repr(self):
        _, blocks = _blocks(10, 4)
        assert repr(BlockLayout.from_flat(blocks)) == (
            "BlockLayout(n=10, n_blocks=3, block_size=4, last_block_size=2)"
        )


class TestLabels:
    """Labels are all-or-nothing over the diagonal blocks."""

    def test_labels_and_dimnames(self):
        labels = [f"ID_{k}" for k in range(1, 11)]
        _, blocks = _blocks(10, 4, labels=labels)
        layout = BlockLayout.from_flat(blocks)

        assert layout.labels() == labels
        assert layout.dimnames() == (labels, labels)

    def test_missing_block_labels_drop_all_labels(self):
        labels = [f"ID_{k}" for k in range(1, 11)]
        _, blocks = _blocks(10, 4, labels=labels)
        blocks[2].col_labels = None
        layout = BlockLayout.from_flat(blocks)

        assert layout.labels() is None
        assert layout.dimnames() is None

    def test_wrong_label_count_fails(self):
        _, blocks = _blocks(4, 4, labels=["a", "b", "c", "d"])
        blocks[0].col_labels = ["a", "b"]

        with pytest.raises(LayoutError, match="column labels cover 2 columns"):
            BlockLayout.from_flat(blocks)


class TestConstruction:
    """Construction errors and metadata."""

    def test_non_triangular_flat_count_fails(self):
        _, blocks = _blocks(10, 4)
        with pytest.raises(ShapeError):
            BlockLayout.from_flat(blocks[:5])

    def test_malformed_rows_fail(self):
        with pytest.raises(LayoutError, match="at least one block"):
            BlockLayout.from_rows([])

    def test_centers_and_scales_are_kept(self):
        _, blocks = _blocks(4, 2)
        layout = BlockLayout.from_flat(blocks, centers=[1, 2, 3, 4], scales=[2, 2, 2, 2])

        assert layout.centers.tolist() == [1.0, 2.0, 3.0, 4.0]
        assert layout.scales.tolist() == [2.0, 2.0, 2.0, 2.0]

    def test_close_releases_in_memory_blocks(self):
        _, blocks = _blocks(4, 2)
        with BlockLayout.from_flat(blocks) as layout:
            assert layout.get(1, 1).numel() == 1

        with pytest.raises(StorageError, match="closed"):
            layout.get(1, 1)
