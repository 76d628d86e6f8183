"""Contrastive divergence training for spike-and-slab RBMs.

The model only provides phase statistics and samplers. This module chains them into CD-k gradients and runs a mini-batch loop with an `Optimizer`. After every update the visible penalty is clipped from below so that the visible layer stays a proper Gaussian, and the new parameter array is re-viewed through `reset`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import partial
from typing import Literal

import jax
import jax.numpy as jnp
from jax import Array

from .geometry import Optimizer, OptState, batched_mean
from .models.spike_slab import SpikeSlabRBM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrainingConfig:
    """Hyperparameters of the contrastive divergence loop."""

    n_epochs: int = 10
    batch_size: int = 10
    learning_rate: float = 0.01
    cd_steps: int = 1
    optimizer: Literal["sgd", "adamw"] = "sgd"
    momentum: float = 0.0
    max_grad_norm: float | None = None
    min_visible_penalty: float = 1e-3
    """Lower bound enforced on the visible penalty after each update."""


def contrastive_divergence_sample(
    key: Array, model: SpikeSlabRBM, params: Array, x: Array, k: int = 1
) -> Array:
    """Run `k` steps of block Gibbs sampling starting from `x`."""

    def step(_: int, state: tuple[Array, Array]) -> tuple[Array, Array]:
        step_key, v = state
        step_key, gibbs_key = jax.random.split(step_key)
        return step_key, model.gibbs_step(gibbs_key, params, v)

    _, sample = jax.lax.fori_loop(0, k, step, (key, x))
    return sample


def contrastive_divergence_gradient(
    key: Array, model: SpikeSlabRBM, params: Array, x: Array, k: int = 1
) -> Array:
    """Estimate the log-likelihood gradient at `x` with CD-k.

    Returns the positive-phase statistics at `x` minus the negative-phase statistics at the end of a `k`-step Gibbs chain started from `x`. This is an ascent direction; negate it for a minimizing optimizer.
    """
    pos_key, chain_key, neg_key = jax.random.split(key, 3)
    positive = model.positive_phase(pos_key, params, x)
    negative_sample = contrastive_divergence_sample(chain_key, model, params, x, k)
    negative = model.negative_phase(neg_key, params, negative_sample)
    return positive - negative


def mean_contrastive_divergence_gradient(
    key: Array, model: SpikeSlabRBM, params: Array, xs: Array, k: int = 1
) -> Array:
    """Average the CD-k gradient over a batch of visible vectors."""
    keys = jax.random.split(key, xs.shape[0])

    def gradient_at(sample_key: Array, x: Array) -> Array:
        return contrastive_divergence_gradient(sample_key, model, params, x, k)

    return jnp.mean(jax.vmap(gradient_at)(keys, xs), axis=0)


def project_visible_penalty(
    model: SpikeSlabRBM, params: Array, min_penalty: float
) -> Array:
    """Clip the visible penalty of a parameter array from below."""
    weight, spike_bias, visible_penalty = model.split_params(params)
    return model.join_params(
        weight, spike_bias, jnp.maximum(visible_penalty, min_penalty)
    )


def make_optimizer(model: SpikeSlabRBM, config: TrainingConfig) -> Optimizer[SpikeSlabRBM]:
    """Build the optimizer named in `config`, projecting the visible penalty after each update."""
    match config.optimizer:
        case "sgd":
            optimizer = Optimizer.sgd(
                model, learning_rate=config.learning_rate, momentum=config.momentum
            )
        case "adamw":
            optimizer = Optimizer.adamw(model, learning_rate=config.learning_rate)
        case _:
            raise ValueError(f"Unknown optimizer: {config.optimizer!r}")
    if config.max_grad_norm is not None:
        optimizer = optimizer.with_grad_clip(config.max_grad_norm)
    return optimizer.with_projection(
        partial(project_visible_penalty, model, min_penalty=config.min_visible_penalty)
    )


def train(
    key: Array,
    model: SpikeSlabRBM,
    params: Array,
    data: Array,
    config: TrainingConfig | None = None,
) -> tuple[Array, list[float]]:
    """Train an ssRBM on `data` with mini-batch contrastive divergence.

    Args:
        key: JAX random key
        model: ssRBM to train
        params: Initial parameters
        data: Visible vectors (shape: n_samples, n_visible)
        config: Training hyperparameters

    Returns:
        Tuple of (trained parameters, mean free energy of the data after each epoch)

    Raises:
        ValueError: If `data` is empty
    """
    if config is None:
        config = TrainingConfig()

    model.reset(params)
    n_samples = data.shape[0]
    if n_samples == 0:
        raise ValueError("Cannot train on an empty dataset")
    batch_size = min(config.batch_size, n_samples)
    n_batches = n_samples // batch_size

    optimizer = make_optimizer(model, config)
    opt_state = optimizer.init(params)

    @jax.jit
    def train_step(
        step_key: Array, opt_state: OptState, p: Array, batch: Array
    ) -> tuple[OptState, Array]:
        grad = mean_contrastive_divergence_gradient(
            step_key, model, p, batch, config.cd_steps
        )
        return optimizer.ascend(opt_state, grad, p)

    @jax.jit
    def data_free_energy(p: Array) -> Array:
        return batched_mean(lambda x: model.free_energy(p, x), data, batch_size=256)

    free_energies: list[float] = []

    for epoch in range(config.n_epochs):
        key, shuffle_key = jax.random.split(key)
        shuffled = jax.random.permutation(shuffle_key, data)

        for i in range(n_batches):
            key, step_key = jax.random.split(key)
            batch = shuffled[i * batch_size : (i + 1) * batch_size]
            opt_state, params = train_step(step_key, opt_state, params, batch)

        model.reset(params)
        free_energy = float(data_free_energy(params))
        free_energies.append(free_energy)
        logger.info(
            "Epoch %d/%d: mean free energy %.4f", epoch + 1, config.n_epochs, free_energy
        )

    return params, free_energies
