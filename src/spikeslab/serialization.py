"""Saving and loading spike-and-slab models.

`serialize` is a pure read of a model and its parameters. `deserialize` rebuilds the model from the stored dimensions and hyperparameters, validates the stored parameter array against it, and returns a ready-to-use pair; nothing else needs to be resized or re-bound afterwards.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import jax.numpy as jnp
import numpy as np
from jax import Array

from .errors import DimensionMismatchError, SerializationError
from .models.spike_slab import SpikeSlabRBM, spike_slab_rbm

logger = logging.getLogger(__name__)

STATE_FIELDS = (
    "visible_size",
    "hidden_size",
    "pool_size",
    "parameter",
    "weight",
    "spike_bias",
    "slab_penalty",
    "radius",
    "visible_penalty",
)
"""Fields of a serialized model, in order."""


def serialize(model: SpikeSlabRBM, params: Array) -> dict[str, Any]:
    """Convert a model and its parameters into a JSON-compatible dictionary.

    The structured views are stored alongside the flat parameters so that the state can be checked for consistency when it is loaded.
    """
    weight, spike_bias, visible_penalty = model.reset(params)
    return {
        "visible_size": model.n_visible,
        "hidden_size": model.n_hidden,
        "pool_size": model.pool_size,
        "parameter": np.asarray(params).tolist(),
        "weight": np.asarray(weight).tolist(),
        "spike_bias": np.asarray(spike_bias).tolist(),
        "slab_penalty": [list(row) for row in model.slab_penalty],
        "radius": model.radius,
        "visible_penalty": np.asarray(visible_penalty).tolist(),
    }


def _stored_size(state: dict[str, Any], name: str) -> int:
    value = state[name]
    integral = isinstance(value, int | float) and float(value).is_integer()
    if isinstance(value, bool) or not integral:
        raise SerializationError(f"stored {name} must be an integer, got {value!r}")
    return int(value)


def deserialize(state: dict[str, Any]) -> tuple[SpikeSlabRBM, Array]:
    """Rebuild a model and its parameters from a serialized dictionary.

    Raises:
        SerializationError: If a field is missing, a size is not integral, or the redundant views disagree with the flat parameters
        DimensionMismatchError: If the parameters do not fit the stored dimensions
        InvalidPenaltyError: If the stored hyperparameters are invalid
    """
    missing = [name for name in STATE_FIELDS if name not in state]
    if missing:
        raise SerializationError(f"serialized state is missing fields: {missing}")

    model = spike_slab_rbm(
        _stored_size(state, "visible_size"),
        _stored_size(state, "hidden_size"),
        _stored_size(state, "pool_size"),
        state["slab_penalty"],
        float(state["radius"]),
    )

    params = jnp.asarray(state["parameter"], dtype=float)
    views = model.reset(params)

    for name, view in zip(("weight", "spike_bias", "visible_penalty"), views):
        stored = np.asarray(state[name], dtype=float)
        if stored.shape != view.shape:
            raise DimensionMismatchError(
                f"stored {name} has shape {stored.shape}, expected {view.shape}"
            )
        if not np.allclose(stored, np.asarray(view)):
            raise SerializationError(f"stored {name} disagrees with the parameter array")

    return model, params


def save(path: str | Path, model: SpikeSlabRBM, params: Array) -> None:
    """Write a model and its parameters to a JSON file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(serialize(model, params), f, indent=2)
    logger.debug("Saved ssRBM (dim=%d) to %s", model.dim, path)


def load(path: str | Path) -> tuple[SpikeSlabRBM, Array]:
    """Read a model and its parameters from a JSON file written by `save`."""
    path = Path(path)
    with open(path) as f:
        model, params = deserialize(json.load(f))
    logger.debug("Loaded ssRBM (dim=%d) from %s", model.dim, path)
    return model, params
