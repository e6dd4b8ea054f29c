"""
symDMatrix storage configuration dataclass.

This module provides the configuration shared by the matrix builder, the
block store and the retrieval engine: how large blocks are, which dtype and
file extension they are persisted with, and how they are read back.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import torch


# Floating dtypes a block may be persisted with
SUPPORTED_DTYPES = ("float16", "bfloat16", "float32", "float64")


@dataclass
class SymDConfig:
    """
    Configuration for building and reading block-triangular symmetric matrices.

    Args:
        block_size: Number of rows/columns of every non-final block.
            None stores the whole matrix as a single block.
        dtype: Name of the torch dtype blocks are stored with
        block_extension: File extension of per-block files
        descriptor_name: File name of the layout descriptor written by the builder
        mmap: Memory-map block files when (re)opening them
        max_workers: Number of threads used to fetch distinct blocks during
            retrieval (1 = sequential)
        check_symmetry: Warn when a dense source passed to the builder is
            not symmetric

    Example:
        >>> config = SymDConfig(block_size=4, dtype="float32")
        >>> config.validate()
        >>> config.torch_dtype
        torch.float32
    """

    block_size: Optional[int] = 5000
    dtype: str = "float64"
    block_extension: str = "pt"
    descriptor_name: str = "symDMatrix.json"
    mmap: bool = True
    max_workers: int = 1
    check_symmetry: bool = False

    @property
    def torch_dtype(self) -> torch.dtype:
        """Resolve ``dtype`` to a torch dtype."""
        if self.dtype not in SUPPORTED_DTYPES:
            raise ValueError(
                f"dtype must be one of {SUPPORTED_DTYPES}, got '{self.dtype}'"
            )
        return getattr(torch, self.dtype)

    @classmethod
    def from_cfg(cls, cfg: Any) -> "SymDConfig":
        """
        Create SymDConfig from a dict or any object exposing matching attributes.

        Unknown keys are ignored.

        Example:
            >>> config = SymDConfig.from_cfg({"block_size": 1000, "foo": 1})
            >>> config.block_size
            1000
        """
        if cfg is None:
            return cls()

        if isinstance(cfg, cls):
            return cfg

        if isinstance(cfg, dict):
            valid_fields = {k: v for k, v in cfg.items() if k in cls.__dataclass_fields__}
            return cls(**valid_fields)

        kwargs = {}
        for field_name in cls.__dataclass_fields__:
            if hasattr(cfg, field_name):
                kwargs[field_name] = getattr(cfg, field_name)

        return cls(**kwargs)

    def validate(self) -> None:
        """
        Validate configuration constraints.

        Raises:
            ValueError: If configuration is invalid
        """
        if self.block_size is not None:
            if isinstance(self.block_size, bool) or not isinstance(self.block_size, int):
                raise ValueError(
                    f"block_size must be an int or None, got {type(self.block_size).__name__}"
                )
            if self.block_size < 1:
                raise ValueError(f"block_size must be positive, got {self.block_size}")

        # Raises on unsupported dtype names
        self.torch_dtype

        ext = self.block_extension
        if not ext or ext.startswith(".") or "/" in ext:
            raise ValueError(
                f"block_extension must be a bare extension like 'pt', got '{ext}'"
            )

        if not self.descriptor_name or "/" in self.descriptor_name:
            raise ValueError(
                f"descriptor_name must be a plain file name, got '{self.descriptor_name}'"
            )

        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            field_name: getattr(self, field_name)
            for field_name in self.__dataclass_fields__
        }

    def __repr__(self) -> str:
        """Custom repr showing key parameters."""
        parts = [
            f"block_size={self.block_size}",
            f"dtype='{self.dtype}'",
            f"block_extension='{self.block_extension}'",
        ]
        if not self.mmap:
            parts.append("mmap=False")
        if self.max_workers > 1:
            parts.append(f"max_workers={self.max_workers}")
        if self.check_symmetry:
            parts.append("check_symmetry=True")
        return f"SymDConfig({', '.join(parts)})"
