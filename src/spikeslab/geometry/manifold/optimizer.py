"""This module is a thin, type-safe wrapper around `Optax` for flat parameter arrays.

Besides the update rule, an `Optimizer` can carry a projection that maps updated parameters back onto the valid region of the manifold (for example, keeping precisions positive), and it can step along ascent directions such as contrastive divergence estimates.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from typing import NewType

from jax import Array
from optax import (
    GradientTransformation,
    ScalarOrSchedule,
    adamw,
    apply_updates,
    chain,
    clip_by_global_norm,
    sgd,
)

from .base import Manifold

OptState = NewType("OptState", object)
"""Opaque optimizer state."""


@dataclass(frozen=True)
class Optimizer[M: Manifold]:
    """Applies gradient updates to points of a manifold."""

    optimizer: GradientTransformation
    opt_man: M
    projection: Callable[[Array], Array] | None = None
    """Map applied to the parameters after every update."""

    @classmethod
    def adamw(
        cls,
        man: M,
        learning_rate: ScalarOrSchedule = 0.1,
        b1: float = 0.9,
        b2: float = 0.999,
        weight_decay: float = 0.0001,
    ) -> Optimizer[M]:
        return cls(adamw(learning_rate, b1=b1, b2=b2, weight_decay=weight_decay), man)

    @classmethod
    def sgd(
        cls,
        man: M,
        learning_rate: ScalarOrSchedule = 0.1,
        momentum: float = 0.0,
    ) -> Optimizer[M]:
        """Create SGD optimizer.

        Args:
            man: Manifold for optimization
            learning_rate: Learning rate
            momentum: Momentum parameter, zero for plain SGD
        """
        return cls(sgd(learning_rate, momentum=momentum or None), man)

    def init(self, point: Array) -> OptState:
        """Initialize optimizer state for a parameter array."""
        return OptState(self.optimizer.init(point))

    def update(
        self,
        opt_state: OptState,
        grads: Array,
        point: Array,
    ) -> tuple[OptState, Array]:
        """Take a descent step along `grads`.

        Args:
            opt_state: Current optimizer state
            grads: Gradient of the objective to minimize, laid out like `point`
            point: Current parameter array

        Returns:
            Tuple of (new optimizer state, updated and projected parameters)
        """
        updates, new_opt_state = self.optimizer.update(grads, opt_state, point)
        new_point = apply_updates(point, updates)
        if self.projection is not None:
            new_point = self.projection(new_point)
        return OptState(new_opt_state), new_point

    def ascend(
        self,
        opt_state: OptState,
        direction: Array,
        point: Array,
    ) -> tuple[OptState, Array]:
        """Take a step along an ascent direction, e.g. a log-likelihood gradient estimate."""
        return self.update(opt_state, -direction, point)

    def with_grad_clip(self, max_norm: float) -> Optimizer[M]:
        """Clip gradients by global norm before the update rule."""
        return replace(
            self, optimizer=chain(clip_by_global_norm(max_norm), self.optimizer)
        )

    def with_projection(self, projection: Callable[[Array], Array]) -> Optimizer[M]:
        """Apply `projection` to the parameters after every update."""
        return replace(self, projection=projection)
