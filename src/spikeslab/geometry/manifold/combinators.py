"""Core classes for combining coordinate blocks.

This module provides ways to build a composite coordinate space from simpler blocks. A model's flat parameter array is split into its blocks with `split_coords` and rebuilt with `join_coords`, so the layout of the array is described in exactly one place.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import override

import jax.numpy as jnp
from jax import Array

from .base import Manifold


@dataclass(frozen=True)
class Block(Manifold):
    """A block of real coordinates with a tensor shape.

    In practice, each block is stored flat in column-major (Fortran) order, so that for a tensor of shape ``(n, m, k)`` the ``[:, :, i]`` slice occupies the contiguous range ``[i * n * m, (i + 1) * n * m)`` of the flat coordinates.
    """

    shape: tuple[int, ...]
    """Tensor shape of the block."""

    @property
    @override
    def dim(self) -> int:
        return math.prod(self.shape)

    def to_array(self, coords: Array) -> Array:
        """View flat coordinates as a tensor of shape `shape`."""
        return jnp.reshape(coords, self.shape, order="F")

    def from_array(self, array: Array) -> Array:
        """Flatten a tensor of shape `shape` into coordinates."""
        return jnp.reshape(array, (self.dim,), order="F")


@dataclass(frozen=True)
class Tuple(Manifold, ABC):
    """This protocol defines a common interface for manifolds that split coordinates into tuples and join them back together.

    Subclasses implement split_coords with a specific return type, and join_coords with a specific number of coordinates.
    """

    @abstractmethod
    def split_coords(self, coords: Array) -> tuple[Array, ...]:
        """Split coordinates into tuple components."""

    @abstractmethod
    def join_coords(self, *components: Array) -> Array:
        """Join tuple components into a single array."""


@dataclass(frozen=True)
class Triple[First: Manifold, Second: Manifold, Third: Manifold](Tuple, ABC):
    """Triple combines three coordinate spaces, providing methods to split coordinates into their respective components and join them back together.

    In theory, this implements the Cartesian product $\\mathcal M_1 \\times \\mathcal M_2 \\times \\mathcal M_3$, whose dimension is the sum of the component dimensions.
    """

    # Contract

    @property
    @abstractmethod
    def fst_man(self) -> First:
        """First component manifold."""

    @property
    @abstractmethod
    def snd_man(self) -> Second:
        """Second component manifold."""

    @property
    @abstractmethod
    def trd_man(self) -> Third:
        """Third component manifold."""

    # Overrides

    @property
    @override
    def dim(self) -> int:
        """Total dimension is the sum of component dimensions."""
        return self.fst_man.dim + self.snd_man.dim + self.trd_man.dim

    @property
    def offsets(self) -> tuple[int, int, int]:
        """Start index of each component within the flat coordinates."""
        first_dim = self.fst_man.dim
        return (0, first_dim, first_dim + self.snd_man.dim)

    @override
    def split_coords(self, coords: Array) -> tuple[Array, Array, Array]:
        """Split coordinates into first, second, and third components.

        Args:
            coords: Array of concatenated coordinates

        Returns:
            Tuple of (fst_coords, snd_coords, trd_coords)
        """
        _, snd_start, trd_start = self.offsets

        fst_coords = coords[:snd_start]
        snd_coords = coords[snd_start:trd_start]
        trd_coords = coords[trd_start:]

        return (fst_coords, snd_coords, trd_coords)

    @override
    def join_coords(  # pyright: ignore[reportIncompatibleMethodOverride]
        self, fst_coords: Array, snd_coords: Array, trd_coords: Array
    ) -> Array:
        """Join component coordinates into a single array.

        Args:
            fst_coords: coordinates from first manifold
            snd_coords: coordinates from second manifold
            trd_coords: coordinates from third manifold

        Returns:
            Concatenated array
        """
        return jnp.concatenate([fst_coords, snd_coords, trd_coords])
