from .manifold.base import (
    Manifold,
)
from .manifold.combinators import (
    Block,
    Triple,
    Tuple,
)
from .manifold.optimizer import (
    Optimizer,
    OptState,
)
from .manifold.util import (
    batched_mean,
    initialize_jax,
)

__all__ = [
    "Block",
    "Manifold",
    "OptState",
    "Optimizer",
    "Triple",
    "Tuple",
    "batched_mean",
    "initialize_jax",
]
