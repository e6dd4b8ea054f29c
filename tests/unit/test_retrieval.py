"""Tests for element retrieval from in-memory block layouts.

Covers:
- Agreement with the dense matrix for every selector kind
- Symmetry of lower/upper triangle requests
- Drop semantics and labels of the result
- Flat (single-subscript) indexing
- Sequential and threaded block fetch
"""

import pytest
import torch

from symd_core.errors import LabelError, SelectorError
from symd_core.index import selectors
from symd_core.layout.block_layout import BlockLayout
from symd_core.retrieval.engine import RetrievalEngine, map_to_blocks
from symd_core.storage.block_store import BlockHandle


def _sym(n, seed=0):
    g = torch.Generator().manual_seed(seed)
    x = torch.randn(n, 3, generator=g, dtype=torch.float64)
    m = x @ x.T
    # Exactly symmetric, not just up to rounding
    return (m + m.T) / 2


def _layout(m, block_size, labels=None, max_workers=1):
    """In-memory layout holding the upper blocks of ``m``."""
    n = m.shape[0]
    starts = list(range(0, n, block_size))
    rows = []
    for r, r0 in enumerate(starts):
        r1 = min(r0 + block_size, n)
        row = []
        for c0 in starts[r:]:
            c1 = min(c0 + block_size, n)
            row.append(
                BlockHandle.from_tensor(
                    m[r0:r1, c0:c1].clone(),
                    row_labels=None if labels is None else labels[r0:r1],
                    col_labels=None if labels is None else labels[c0:c1],
                )
            )
        rows.append(row)
    return BlockLayout(rows, max_workers=max_workers)


@pytest.fixture
def dense():
    return _sym(10)


@pytest.fixture
def labels():
    return [f"ID_{k}" for k in range(1, 11)]


@pytest.fixture
def layout(dense, labels):
    return _layout(dense, 4, labels=labels)


class TestMapToBlocks:
    """Mirroring and block coordinates."""

    def test_lower_triangle_pair_is_mirrored(self):
        rb, cb, lr, lc = map_to_blocks(torch.tensor([9]), torch.tensor([2]), block_size=4)

        assert (rb.item(), cb.item(), lr.item(), lc.item()) == (1, 3, 2, 1)

    def test_upper_pair_is_unchanged(self):
        rb, cb, lr, lc = map_to_blocks(torch.tensor([5]), torch.tensor([8]), block_size=4)

        assert (rb.item(), cb.item(), lr.item(), lc.item()) == (2, 2, 1, 4)

    def test_pairs_never_fall_below_the_diagonal_block(self):
        g = torch.Generator().manual_seed(1)
        rows = torch.randint(1, 11, (200,), generator=g)
        cols = torch.randint(1, 11, (200,), generator=g)
        rb, cb, _, _ = map_to_blocks(rows, cols, block_size=3)

        assert bool((rb <= cb).all())


class TestDenseEquivalence:
    """Retrieval matches indexing of the dense matrix."""

    @pytest.mark.parametrize("block_size", [1, 3, 4, 5, 10, 12])
    def test_full_matrix(self, dense, block_size):
        layout = _layout(dense, block_size)
        assert torch.equal(layout.get(), dense)

    def test_top_left_block(self, layout, dense):
        assert torch.equal(layout.get([1, 2], [1, 2]), dense[:2, :2])

    def test_arbitrary_order_and_duplicates(self, layout, dense):
        rows = [10, 1, 5, 5, 9]
        cols = [3, 10, 2]
        expected = dense[[r - 1 for r in rows]][:, [c - 1 for c in cols]]

        assert torch.equal(layout.get(rows, cols), expected)

    def test_mask_selectors(self, layout, dense):
        result = layout.get([True, False], [False, True, True])
        expected = dense[0::2][:, [1, 2, 4, 5, 7, 8]]

        assert torch.equal(result, expected)

    def test_boundary_elements(self, layout, dense):
        assert torch.equal(layout.get([9, 10], [9, 10]), dense[8:, 8:])
        assert torch.equal(layout.get([10], [1, 4, 5, 8, 9], drop=False), dense[[9]][:, [0, 3, 4, 7, 8]])

    def test_tensor_selectors(self, layout, dense):
        rows = torch.tensor([2, 7])
        assert torch.equal(layout.get(rows, rows), dense[[1, 6]][:, [1, 6]])


class TestSymmetry:
    """M[i, j] == M[j, i] for every pair."""

    def test_every_pair_is_symmetric(self, layout):
        full = layout.get()
        assert torch.equal(full, full.T)

    def test_lower_and_upper_requests_agree(self, layout):
        for i in range(1, 11):
            for j in range(1, 11):
                assert layout.get(i, j).item() == layout.get(j, i).item()


class TestDropAndLabels:
    """Result shape and labels."""

    def test_drop_single_row(self, layout):
        result = layout.get(3, None)
        assert result.shape == (10,)

    def test_drop_single_column(self, layout):
        result = layout.get(None, [4])
        assert result.shape == (10,)

    def test_no_drop_keeps_matrix(self, layout):
        result = layout.get([3], None, drop=False)
        assert result.shape == (1, 10)

    def test_two_by_two_never_dropped(self, layout):
        assert layout.get([1, 2], [1, 2], drop=True).shape == (2, 2)

    def test_labels_follow_requested_order(self, layout):
        selection = layout.select([9, 2], [1, 10])

        assert selection.row_labels == ["ID_9", "ID_2"]
        assert selection.col_labels == ["ID_1", "ID_10"]
        assert selection.shape == (2, 2)

    def test_unlabeled_selection_has_no_labels(self, dense):
        selection = _layout(dense, 4).select([1], [2])
        assert selection.row_labels is None
        assert selection.col_labels is None

    def test_label_selectors_match_positions(self, layout):
        by_label = layout.get(["ID_1", "ID_2"], ["ID_1", "ID_2"])
        by_position = layout.get([1, 2], [1, 2])

        assert torch.equal(by_label, by_position)

    def test_unknown_label_fails(self, layout):
        with pytest.raises(SelectorError, match="labels not found"):
            layout.get(["ID_1", "ID_99"], None)

    def test_label_selector_without_labels_fails(self, dense):
        with pytest.raises(LabelError):
            _layout(dense, 4).get("ID_1", 1)

    def test_out_of_range_fails_without_invalidating_layout(self, layout, dense):
        with pytest.raises(SelectorError):
            layout.get([1, 11], [1])
        with pytest.raises(IndexError):
            layout.get([0], [1])

        assert torch.equal(layout.get([1, 2], [1, 2]), dense[:2, :2])


class TestLabelLookup:
    """Retrieval never copies or re-indexes the full label vector."""

    def test_position_requests_do_not_touch_labels(self, layout, monkeypatch):
        calls = []
        original = BlockLayout.labels

        def counting(self):
            calls.append(1)
            return original(self)

        monkeypatch.setattr(BlockLayout, "labels", counting)
        layout.get(1, 1)
        layout.select([1, 9], [2])
        layout.get(["ID_3"], ["ID_1", "ID_2"])

        assert calls == []

    def test_label_lookup_is_built_once(self, layout, monkeypatch):
        calls = []
        original = selectors.label_lookup

        def counting(labels):
            calls.append(1)
            return original(labels)

        monkeypatch.setattr(selectors, "label_lookup", counting)
        layout.get(["ID_3"], ["ID_1", "ID_2"])
        layout.get("ID_10", "ID_10")

        assert calls == []
        assert layout.label_index is layout.label_index
        assert layout.label_index["ID_10"] == 10

    def test_labels_at(self, layout, dense):
        assert layout.labels_at([10, 1, 1]) == ["ID_10", "ID_1", "ID_1"]
        assert _layout(dense, 4).labels_at([1]) is None


class TestFlatIndex:
    """Single-subscript retrieval over the flattened matrix."""

    def test_flat_index_eleven_is_row_one_column_two(self, layout, dense):
        assert layout.get_flat(11).item() == dense[0, 1].item()

    def test_flat_indices_are_paired_not_crossed(self, layout, dense):
        result = layout.get_flat([1, 12, 100])
        expected = torch.stack([dense[0, 0], dense[1, 1], dense[9, 9]])

        assert result.shape == (3,)
        assert torch.equal(result, expected)

    def test_flat_without_drop_is_a_row(self, layout):
        assert layout.get_flat([1, 2, 3], drop=False).shape == (1, 3)

    def test_flat_result_has_no_labels(self, layout):
        selection = RetrievalEngine(layout).select_flat([5])
        assert selection.row_labels is None


class TestBlockFetch:
    """Each touched block is fetched once."""

    def test_blocks_opened_once_per_call(self, layout, monkeypatch):
        calls = []
        original = BlockHandle.read_elements

        def counting(self, rows, cols):
            calls.append(id(self))
            return original(self, rows, cols)

        monkeypatch.setattr(BlockHandle, "read_elements", counting)
        layout.get([1, 2, 3, 9], [1, 2, 10])

        assert len(calls) == len(set(calls))
        # (1,1), (1,3) and (3,3)
        assert len(calls) == 3

    def test_threaded_fetch_matches_sequential(self, dense):
        sequential = _layout(dense, 3).get()
        threaded = _layout(dense, 3, max_workers=4).get()

        assert torch.equal(sequential, threaded)

    def test_invalid_worker_count_fails(self, layout):
        with pytest.raises(ValueError, match="max_workers"):
            RetrievalEngine(layout, max_workers=0)

    def test_empty_selection(self, layout):
        result = layout.get([], [1, 2], drop=False)
        assert result.shape == (0, 2)
        assert result.dtype == torch.float64
