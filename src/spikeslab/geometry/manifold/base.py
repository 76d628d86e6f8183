"""This module provides the base class for coordinate spaces over flat parameter arrays.

In practice, every model in this package stores its trainable values as a single flat array, and a `Manifold` describes how many coordinates that array has and how to create points and pair them with their gradients.

In theory, a manifold $\\mathcal M$ is a space that locally resembles $\\mathbb R^n$; here we only ever need its global Euclidean chart.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import jax.numpy as jnp
from jax import Array


class Manifold(ABC):
    """A space of points represented by flat coordinate arrays.

    In practice, a Manifold defines operations on arrays representing points and provides a method to create them. Gradients live in the same coordinate layout as points, so optimizers can treat both as plain arrays.
    """

    # Abstract methods

    @property
    @abstractmethod
    def dim(self) -> int:
        """The dimension of the manifold."""
        ...

    @property
    def coordinates_shape(self) -> list[int]:
        """Shape of the flattened coordinate array for points on this manifold.

        Important distinction: `coordinates_shape` describes **storage layout**, while properties like `Block.shape` describe **mathematical structure**. Points must be flat so that blocks can be joined together into composite manifolds, yet each block still carries the shape metadata needed to view its coordinates as a matrix or tensor.
        """
        return [self.dim]

    # Array operations

    def zeros(self) -> Array:
        """Create an array of zeros with the manifold's dimension."""
        return jnp.zeros(self.coordinates_shape)
