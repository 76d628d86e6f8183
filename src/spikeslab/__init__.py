"""Spike-and-slab Restricted Boltzmann Machines in JAX."""

from .errors import (
    DimensionMismatchError,
    InvalidPenaltyError,
    SerializationError,
    SpikeSlabError,
)
from .models import MAX_VISIBLE_TRIALS, SpikeSlabParams, SpikeSlabRBM, spike_slab_rbm
from .serialization import deserialize, load, save, serialize
from .training import (
    TrainingConfig,
    contrastive_divergence_gradient,
    contrastive_divergence_sample,
    mean_contrastive_divergence_gradient,
    train,
)

__all__ = [
    "MAX_VISIBLE_TRIALS",
    "DimensionMismatchError",
    "InvalidPenaltyError",
    "SerializationError",
    "SpikeSlabError",
    "SpikeSlabParams",
    "SpikeSlabRBM",
    "TrainingConfig",
    "contrastive_divergence_gradient",
    "contrastive_divergence_sample",
    "deserialize",
    "load",
    "mean_contrastive_divergence_gradient",
    "save",
    "serialize",
    "spike_slab_rbm",
    "train",
]
