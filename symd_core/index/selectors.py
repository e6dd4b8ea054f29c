"""Row/column selectors and their resolution to 1-based positions.

A selector is a tagged value: every selector, whatever the caller passed in,
is converted once by ``Selector.coerce`` and resolved by ``resolve`` through
its ``kind`` alone.

Positions are 1-based throughout. Duplicates and arbitrary order are kept.
"""

import numbers
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import torch
from torch import Tensor

from ..errors import LabelError, SelectorError

# Position assigned to labels that do not exist
MISSING = 0


class SelectorKind(Enum):
    ALL = "all"
    MASK = "mask"
    POSITIONS = "positions"
    LABELS = "labels"


@dataclass(frozen=True)
class Selector:
    """Selector for one axis of a matrix.

    Attributes:
        kind: Which variant this selector is
        values: Bool tensor (MASK), long tensor of 1-based positions
            (POSITIONS), list of labels (LABELS), or None (ALL)

    Example:
        >>> Selector.coerce([True, False]).kind
        <SelectorKind.MASK: 'mask'>
        >>> resolve(Selector.positions([3, 1]), n=4)
        tensor([3, 1])
    """

    kind: SelectorKind
    values: Any = None

    @classmethod
    def all(cls) -> "Selector":
        return cls(SelectorKind.ALL)

    @classmethod
    def mask(cls, values: Any) -> "Selector":
        return cls(SelectorKind.MASK, torch.as_tensor(values, dtype=torch.bool).reshape(-1))

    @classmethod
    def positions(cls, values: Any) -> "Selector":
        tensor = torch.as_tensor(values)
        if tensor.is_floating_point():
            # Truncate toward zero like an integer cast
            tensor = tensor.trunc()
        return cls(SelectorKind.POSITIONS, tensor.to(torch.long).reshape(-1))

    @classmethod
    def labels(cls, values: Sequence[str]) -> "Selector":
        return cls(SelectorKind.LABELS, [str(v) for v in values])

    @classmethod
    def coerce(cls, obj: Any) -> "Selector":
        """Build a selector from a plain Python, numpy or torch value.

        None selects everything; bools (or a bool array/tensor) form a mask;
        strings are labels; numbers, ranges and numeric arrays/tensors are
        1-based positions.

        Raises:
            SelectorError: If the value mixes kinds or has an unsupported type
        """
        if obj is None:
            return cls.all()
        if isinstance(obj, Selector):
            return obj
        if isinstance(obj, str):
            return cls.labels([obj])
        if isinstance(obj, np.ndarray):
            if obj.dtype.kind in "USO":
                return cls.coerce(obj.reshape(-1).tolist())
            return cls.coerce(torch.as_tensor(np.ascontiguousarray(obj)))
        if isinstance(obj, np.generic):
            return cls.coerce(obj.item())
        if isinstance(obj, Tensor):
            if obj.dtype == torch.bool:
                return cls.mask(obj)
            if obj.is_complex():
                raise SelectorError(f"unsupported selector dtype {obj.dtype}")
            return cls.positions(obj)
        if isinstance(obj, bool):
            return cls.mask([obj])
        if isinstance(obj, numbers.Real):
            return cls.positions([obj])
        if isinstance(obj, (list, tuple, range)):
            items = [v.item() if isinstance(v, np.generic) else v for v in obj]
            if not items:
                return cls.positions(torch.empty(0, dtype=torch.long))
            if all(isinstance(v, bool) for v in items):
                return cls.mask(items)
            if all(isinstance(v, str) for v in items):
                return cls.labels(items)
            if all(isinstance(v, numbers.Real) and not isinstance(v, bool) for v in items):
                return cls.positions(items)
            raise SelectorError(f"selector mixes value types: {items!r}")
        raise SelectorError(f"unsupported selector type {type(obj).__name__}")


def _recycle(mask: Tensor, length: int) -> Tensor:
    if mask.numel() == 0:
        raise SelectorError("a mask selector needs at least one value")
    reps = -(-length // mask.numel())
    return mask.repeat(reps)[:length]


def _check_range(positions: Tensor, upper: int) -> None:
    bad = (positions < 1) | (positions > upper)
    if bool(bad.any()):
        first = int(positions[bad][0])
        raise SelectorError(f"position {first} is out of range [1, {upper}]")


def label_lookup(labels: Sequence[str]) -> Dict[str, int]:
    """Map each label to its first 1-based position."""
    lookup: Dict[str, int] = {}
    for pos, label in enumerate(labels, start=1):
        lookup.setdefault(label, pos)
    return lookup


def resolve(
    selector: Selector,
    n: int,
    labels: Union[Sequence[str], Mapping, None] = None,
) -> Tensor:
    """Resolve a selector to 1-based positions along an axis of length ``n``.

    ``labels`` is either the axis labels or a prebuilt ``label_lookup``.
    Unknown labels resolve to ``MISSING``; the caller decides how to report
    them.

    Raises:
        SelectorError: Positions outside [1, n] or an empty mask
        LabelError: Label selector on an axis without labels
    """
    kind = selector.kind
    if kind is SelectorKind.ALL:
        return torch.arange(1, n + 1, dtype=torch.long)

    if kind is SelectorKind.MASK:
        return torch.nonzero(_recycle(selector.values, n)).reshape(-1) + 1

    if kind is SelectorKind.POSITIONS:
        positions = selector.values
        _check_range(positions, n)
        return positions

    if kind is SelectorKind.LABELS:
        if labels is None:
            raise LabelError("label selectors need a matrix with labels")
        lookup = labels if isinstance(labels, Mapping) else label_lookup(labels)
        return torch.tensor(
            [lookup.get(label, MISSING) for label in selector.values], dtype=torch.long
        )

    raise SelectorError(f"unknown selector kind {kind}")


def missing_labels(selector: Selector, positions: Tensor) -> List[str]:
    """Labels of ``selector`` that resolved to ``MISSING``."""
    if selector.kind is not SelectorKind.LABELS:
        return []
    return [
        label
        for label, pos in zip(selector.values, positions.tolist())
        if pos == MISSING
    ]


def resolve_flat(selector: Selector, n: int) -> Tuple[Tensor, Tensor]:
    """Resolve a selector over the flattened n * n index space.

    Flat position k (1-based, column-major) maps to
    row = (k - 1) mod n + 1, col = (k - 1) div n + 1.

    Returns:
        Tuple of paired (rows, cols) 1-based positions

    Raises:
        SelectorError: Positions outside [1, n * n] or a label selector
    """
    if selector.kind is SelectorKind.LABELS:
        raise SelectorError("label selectors are not supported over the flattened index")

    flat = resolve(selector, n * n)
    k = flat - 1
    return k % n + 1, torch.div(k, n, rounding_mode="floor") + 1
