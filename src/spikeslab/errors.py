"""Exceptions raised when a spike-and-slab model is built or loaded from invalid inputs.

Validation happens at the boundaries (construction, re-viewing a parameter array, deserialization). Inside traced computations no checks are made.
"""

from __future__ import annotations


class SpikeSlabError(ValueError):
    """Base class for invalid spike-and-slab model inputs."""


class DimensionMismatchError(SpikeSlabError):
    """An array or size does not match the dimensions of the model."""


class InvalidPenaltyError(SpikeSlabError):
    """A precision (penalty) or radius hyperparameter is not strictly positive."""


class SerializationError(SpikeSlabError):
    """A serialized state is inconsistent with itself."""
