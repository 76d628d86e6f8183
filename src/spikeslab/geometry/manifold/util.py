from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array


def batched_mean(f: Callable[[Array], Array], xs: Array, batch_size: int) -> Array:
    """Average `f` over the rows of `xs`, evaluating at most `batch_size` rows at a time.

    The dataset is zero-padded to a whole number of batches and the padded rows are masked out of the sum, so every batch has the same shape and `f` is traced once.
    """
    n_samples = xs.shape[0]

    if n_samples == 0:
        raise ValueError("Cannot compute mean of empty dataset")
    if n_samples <= batch_size:
        return jnp.mean(jax.vmap(f)(xs), axis=0)

    n_batches = -(-n_samples // batch_size)
    n_padding = n_batches * batch_size - n_samples
    padded = jnp.concatenate([xs, jnp.zeros((n_padding, *xs.shape[1:]), xs.dtype)])
    mask = jnp.arange(n_batches * batch_size) < n_samples

    def masked_sum(batch: tuple[Array, Array]) -> Array:
        x_batch, m_batch = batch
        values = jax.vmap(f)(x_batch)
        weights = m_batch.reshape(-1, *([1] * (values.ndim - 1)))
        return jnp.sum(jnp.where(weights, values, 0.0), axis=0)

    batch_sums = jax.lax.map(
        masked_sum,
        (
            padded.reshape(n_batches, batch_size, *xs.shape[1:]),
            mask.reshape(n_batches, batch_size),
        ),
    )
    return jnp.sum(batch_sums, axis=0) / n_samples


def initialize_jax(device: str = "cpu", disable_jit: bool = False) -> None:
    """Initialize JAX configuration."""
    jax.config.update("jax_platform_name", device)
    if disable_jit:
        jax.config.update("jax_disable_jit", True)
