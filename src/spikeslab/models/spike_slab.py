"""Spike-and-slab Restricted Boltzmann Machine (ssRBM).

This module provides:
- SpikeSlabRBM: Gaussian visible layer, binary spike and pooled Gaussian slab latents
- SpikeSlabParams: Structured views of the flat parameter array

Each hidden unit $i$ has a binary spike $h_i$ that gates a pool of $K$ real-valued slab variables $s_{i}$. Marginalising the slabs and summing over the spikes can be done in closed form, which gives the free energy, and both layers have simple conditionals, which makes block Gibbs sampling and contrastive divergence straightforward.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, override

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array
from jax.typing import ArrayLike

from ..errors import DimensionMismatchError, InvalidPenaltyError
from ..geometry import Block, Triple

MAX_VISIBLE_TRIALS = 10
"""Number of visible draws attempted before the radius bound is given up."""


class SpikeSlabParams(NamedTuple):
    """Structured views of an ssRBM parameter array."""

    weight: Array
    """Weight tensor of shape (n_visible, pool_size, n_hidden)."""

    spike_bias: Array
    """Spike bias of shape (n_hidden,)."""

    visible_penalty: Array
    """Diagonal precision of the visible layer, shape (n_visible,)."""


@dataclass(frozen=True)
class SpikeSlabRBM(Triple[Block, Block, Block]):
    """Spike-and-slab Restricted Boltzmann Machine.

    The energy of a visible vector $v$, spikes $h$ and slabs $s$ is

    $$E(v, s, h) = \\frac{1}{2} v^T \\Lambda v + \\sum_i \\frac{1}{2} s_i^T \\alpha_i s_i - \\sum_i v^T W_i s_i h_i - \\sum_i b_i h_i$$

    where:
    - $W_i$ is the (n_visible x pool_size) weight matrix of hidden unit $i$
    - $\\alpha_i$ is the diagonal slab precision of hidden unit $i$ (a fixed hyperparameter)
    - $b_i$ is the spike bias
    - $\\Lambda$ is the diagonal visible precision

    The parameters are stored as one flat array in the order weight, spike bias, visible penalty. The weight tensor is stored column-major, so the weights of hidden unit $i$ are contiguous. The model itself is the layout descriptor: `split_coords` and `join_coords` cut and glue the flat array, and `reset` returns its structured views.

    Latent configurations are flat arrays of length ``n_hidden + pool_size * n_hidden``: the spikes first, followed by the (pool_size x n_hidden) slab matrix in column-major order.

    Attributes:
        n_visible: Number of visible units
        n_hidden: Number of hidden units (spikes)
        pool_size: Number of slab variables per hidden unit
        slab_penalty: Slab precisions, shape (pool_size, n_hidden), all positive
        radius: Soft bound on the norm of sampled visible vectors
    """

    n_visible: int
    """Number of visible units."""

    n_hidden: int
    """Number of hidden units."""

    pool_size: int
    """Number of slab variables pooled under each spike."""

    slab_penalty: tuple[tuple[float, ...], ...]
    """Slab precisions as nested rows, shape (pool_size, n_hidden)."""

    radius: float
    """Soft bound on the norm of sampled visible vectors."""

    def __post_init__(self):
        for name in ("n_visible", "n_hidden", "pool_size"):
            size = getattr(self, name)
            if not isinstance(size, int | np.integer) or size <= 0:
                raise DimensionMismatchError(
                    f"{name} must be a positive integer, got {size!r}"
                )

        penalty = np.asarray(self.slab_penalty, dtype=np.float64)
        if penalty.shape != (self.pool_size, self.n_hidden):
            raise DimensionMismatchError(
                f"slab_penalty has shape {penalty.shape}, "
                f"expected {(self.pool_size, self.n_hidden)}"
            )
        if not np.all(np.isfinite(penalty)) or not np.all(penalty > 0):
            raise InvalidPenaltyError("slab_penalty entries must be finite and positive")

        radius = float(self.radius)
        if not radius > 0:
            raise InvalidPenaltyError(f"radius must be positive, got {radius}")

        # Nested tuples keep the model hashable, so it can be a static jit argument
        object.__setattr__(
            self, "slab_penalty", tuple(tuple(float(a) for a in row) for row in penalty)
        )
        object.__setattr__(self, "radius", radius)

    # Layout

    @property
    @override
    def fst_man(self) -> Block:
        """Weight tensor block."""
        return Block((self.n_visible, self.pool_size, self.n_hidden))

    @property
    @override
    def snd_man(self) -> Block:
        """Spike bias block."""
        return Block((self.n_hidden,))

    @property
    @override
    def trd_man(self) -> Block:
        """Visible penalty block."""
        return Block((self.n_visible,))

    @property
    def weight_offset(self) -> int:
        return self.offsets[0]

    @property
    def spike_bias_offset(self) -> int:
        return self.offsets[1]

    @property
    def visible_penalty_offset(self) -> int:
        return self.offsets[2]

    @property
    def latent_dim(self) -> int:
        """Length of a latent configuration (spikes followed by slabs)."""
        return self.n_hidden + self.pool_size * self.n_hidden

    @property
    def slab_precision(self) -> Array:
        """Slab penalty as an array of shape (pool_size, n_hidden)."""
        return jnp.asarray(self.slab_penalty)

    # Parameter views

    def split_params(self, params: Array) -> SpikeSlabParams:
        """Split a flat parameter (or gradient) array into its structured views."""
        weight, spike_bias, visible_penalty = self.split_coords(params)
        return SpikeSlabParams(
            self.fst_man.to_array(weight), spike_bias, visible_penalty
        )

    def join_params(
        self, weight: Array, spike_bias: Array, visible_penalty: Array
    ) -> Array:
        """Join structured views back into a flat parameter array."""
        return self.join_coords(
            self.fst_man.from_array(weight),
            jnp.ravel(spike_bias),
            jnp.ravel(visible_penalty),
        )

    def reset(self, params: Array) -> SpikeSlabParams:
        """Validate a flat parameter array and return its structured views.

        Call this whenever the parameter array is replaced, e.g. after an optimizer update or after loading. The views are a function of the array alone, so a value written into the array at the weight offset appears in the weight view, and a view written back with `join_params` appears in the array.

        Raises:
            DimensionMismatchError: If the array does not have exactly `dim` entries
        """
        if params.shape != (self.dim,):
            raise DimensionMismatchError(
                f"parameter array has shape {params.shape}, expected ({self.dim},)"
            )
        return self.split_params(params)

    def split_latent(self, latent: Array) -> tuple[Array, Array]:
        """Split a latent configuration into spikes (n_hidden,) and slabs (pool_size, n_hidden)."""
        spike = latent[: self.n_hidden]
        slab = jnp.reshape(
            latent[self.n_hidden :], (self.pool_size, self.n_hidden), order="F"
        )
        return spike, slab

    def join_latent(self, spike: Array, slab: Array) -> Array:
        """Join spikes and slabs into a flat latent configuration."""
        return jnp.concatenate(
            [spike, jnp.reshape(slab, (self.pool_size * self.n_hidden,), order="F")]
        )

    def initialize(self, key: Array, location: float = 0.0, shape: float = 0.1) -> Array:
        """Initialize parameters with Gaussian weights, zero spike bias and unit visible penalty."""
        noise = jax.random.normal(key, (self.fst_man.dim,))
        weight = location + shape * noise
        return self.join_coords(
            weight, jnp.zeros(self.n_hidden), jnp.ones(self.n_visible)
        )

    # Conditionals

    def _slab_projections(self, weight: Array, v: Array) -> Array:
        """Compute $v^T W[:, k, i]$ for every pool component and hidden unit."""
        return jnp.einsum("j,jki->ki", v, weight)

    def spike_mean(self, params: Array, v: Array) -> Array:
        """Compute P(h_i = 1 | v) for all hidden units.

        $$P(h_i = 1 | v) = \\sigma\\left(\\frac{1}{2} v^T W_i \\alpha_i^{-1} W_i^T v + b_i\\right)$$

        Args:
            params: ssRBM parameters
            v: Visible vector (shape: n_visible)

        Returns:
            Spike probabilities (shape: n_hidden)
        """
        weight, spike_bias, _ = self.split_params(params)
        proj = self._slab_projections(weight, v)
        quad = jnp.sum(proj**2 / self.slab_precision, axis=0)
        return jax.nn.sigmoid(0.5 * quad + spike_bias)

    def slab_mean(self, params: Array, v: Array, spike: Array) -> Array:
        """Compute E[s_i | v, h_i] for all hidden units.

        The mean is $h_i \\alpha_i^{-1} W_i^T v$, which vanishes whenever the spike is off.

        Args:
            params: ssRBM parameters
            v: Visible vector (shape: n_visible)
            spike: Spike values (shape: n_hidden)

        Returns:
            Slab means (shape: pool_size x n_hidden)
        """
        weight, _, _ = self.split_params(params)
        proj = self._slab_projections(weight, v)
        return spike[None, :] * proj / self.slab_precision

    def hidden_mean(self, key: Array, params: Array, v: Array) -> Array:
        """Compute the latent mean given a visible vector.

        The slabs depend on the spikes, so the spike is sampled from its mean first and the slab mean is conditioned on that sample. The returned configuration holds the spike means and the conditioned slab means.

        Args:
            key: JAX random key
            params: ssRBM parameters
            v: Visible vector (shape: n_visible)

        Returns:
            Latent configuration (shape: latent_dim)
        """
        spike_mean = self.spike_mean(params, v)
        spike = self.sample_spike(key, spike_mean)
        return self.join_latent(spike_mean, self.slab_mean(params, v, spike))

    def visible_mean(self, params: Array, latent: Array) -> Array:
        """Compute E[v | h, s] = $\\Lambda^{-1} \\sum_i W_i s_i h_i$.

        Args:
            params: ssRBM parameters
            latent: Latent configuration (shape: latent_dim)

        Returns:
            Visible mean (shape: n_visible)
        """
        weight, _, visible_penalty = self.split_params(params)
        spike, slab = self.split_latent(latent)
        return jnp.einsum("jki,ki->j", weight, slab * spike[None, :]) / visible_penalty

    # Sampling

    def sample_spike(self, key: Array, spike_mean: Array) -> Array:
        """Draw one Bernoulli sample per hidden unit."""
        return jax.random.bernoulli(key, spike_mean).astype(spike_mean.dtype)

    def sample_slab(self, key: Array, params: Array, slab_mean: Array) -> Array:
        """Draw Gaussian slabs with the given means and variances $1 / \\alpha$."""
        del params
        noise = jax.random.normal(key, slab_mean.shape, slab_mean.dtype)
        return slab_mean + noise / jnp.sqrt(self.slab_precision)

    def sample_hidden(self, key: Array, params: Array, v: Array) -> Array:
        """Sample a latent configuration given a visible vector.

        Runs spike mean, spike sample, slab mean conditioned on the sampled spike, and slab sample.

        Args:
            key: JAX random key
            params: ssRBM parameters
            v: Visible vector (shape: n_visible)

        Returns:
            Latent configuration (shape: latent_dim)
        """
        spike_key, slab_key = jax.random.split(key)
        spike = self.sample_spike(spike_key, self.spike_mean(params, v))
        slab_mean = self.slab_mean(params, v, spike)
        return self.join_latent(spike, self.sample_slab(slab_key, params, slab_mean))

    def visible_rejection_sample(
        self, key: Array, params: Array, latent: Array
    ) -> tuple[Array, Array]:
        """Sample a visible vector, retrying while its norm is not below `radius`.

        Each trial draws a fresh Gaussian vector around the visible mean. After `MAX_VISIBLE_TRIALS` trials the last draw is returned whether or not it satisfies the bound.

        Returns:
            Tuple of (visible sample, number of trials used)
        """
        mean = self.visible_mean(params, latent)
        _, _, visible_penalty = self.split_params(params)
        std = 1.0 / jnp.sqrt(visible_penalty)

        def draw(k: Array) -> Array:
            return mean + std * jax.random.normal(k, mean.shape, mean.dtype)

        def rejected(state: tuple[Array, Array, Array]) -> Array:
            trial, _, sample = state
            return (trial < MAX_VISIBLE_TRIALS) & (
                jnp.linalg.norm(sample) >= self.radius
            )

        def retry(state: tuple[Array, Array, Array]) -> tuple[Array, Array, Array]:
            trial, k, _ = state
            k, draw_key = jax.random.split(k)
            return trial + 1, k, draw(draw_key)

        key, draw_key = jax.random.split(key)
        init = (jnp.asarray(1, dtype=jnp.int32), key, draw(draw_key))
        n_trials, _, sample = jax.lax.while_loop(rejected, retry, init)
        return sample, n_trials

    def sample_visible(self, key: Array, params: Array, latent: Array) -> Array:
        """Sample a visible vector given a latent configuration.

        The radius is a soft constraint, see `visible_rejection_sample`.
        """
        return self.visible_rejection_sample(key, params, latent)[0]

    def gibbs_step(self, key: Array, params: Array, v: Array) -> Array:
        """Perform one step of block Gibbs sampling, v -> (h, s) -> v'."""
        hidden_key, visible_key = jax.random.split(key)
        latent = self.sample_hidden(hidden_key, params, v)
        return self.sample_visible(visible_key, params, latent)

    # Energies

    def free_energy(self, params: Array, v: Array) -> Array:
        """Compute the free energy of a visible vector with spikes and slabs integrated out.

        $$F(v) = \\frac{1}{2} v^T \\Lambda v - \\sum_{i,k} \\frac{1}{2} \\log \\frac{2\\pi}{\\alpha_{ki}} - \\sum_i \\mathrm{softplus}\\left(b_i + \\sum_k \\frac{(v^T W_{:,k,i})^2}{2 \\alpha_{ki}}\\right)$$

        Args:
            params: ssRBM parameters
            v: Visible vector (shape: n_visible)

        Returns:
            Free energy (scalar)
        """
        weight, spike_bias, visible_penalty = self.split_params(params)
        alpha = self.slab_precision

        quad_term = 0.5 * jnp.dot(v, visible_penalty * v)
        norm_term = -0.5 * jnp.sum(jnp.log(2.0 * jnp.pi / alpha))

        proj = self._slab_projections(weight, v)
        pooled = jnp.sum(proj**2 / (2.0 * alpha), axis=0)
        spike_term = -jnp.sum(jax.nn.softplus(spike_bias + pooled))

        return quad_term + norm_term + spike_term

    def mean_free_energy(self, params: Array, xs: Array) -> Array:
        """Compute mean free energy over a batch of visible vectors.

        Args:
            params: ssRBM parameters
            xs: Batch of visible vectors (shape: n_samples, n_visible)

        Returns:
            Mean free energy (scalar)
        """
        return jnp.mean(jax.vmap(self.free_energy, in_axes=(None, 0))(params, xs))

    def evaluate(self, params: Array, xs: Array) -> Array:
        """Objective hook for generic optimizers; the ssRBM has no tractable likelihood, so this is always zero."""
        del params, xs
        return jnp.asarray(0.0)

    # Gradients

    def _phase_statistics(self, key: Array, params: Array, x: Array) -> Array:
        spike_mean = self.spike_mean(params, x)
        spike = self.sample_spike(key, spike_mean)
        slab_mean = self.slab_mean(params, x, spike)

        weight_grad = jnp.einsum("j,ki->jki", x, slab_mean * spike_mean[None, :])
        visible_penalty_grad = -0.5 * x**2
        return self.join_params(weight_grad, spike_mean, visible_penalty_grad)

    def positive_phase(self, key: Array, params: Array, x: Array) -> Array:
        """Compute the positive-phase statistics at a data vector.

        The statistics are laid out like the parameters:
        - weight: $x \\, \\mathrm{slab}_i^T \\, P(h_i = 1 | x)$ for each hidden unit
        - spike bias: $P(h_i = 1 | x)$
        - visible penalty: $-\\frac{1}{2} x_j^2$

        where the slab mean is conditioned on a spike sampled with `key`.

        Args:
            key: JAX random key
            params: ssRBM parameters
            x: Data vector (shape: n_visible)

        Returns:
            Statistics array (shape: dim)
        """
        return self._phase_statistics(key, params, x)

    def negative_phase(self, key: Array, params: Array, x: Array) -> Array:
        """Compute the negative-phase statistics at a model sample.

        Uses the same formulas as `positive_phase`; the contrastive divergence gradient is the difference of the two.
        """
        return self._phase_statistics(key, params, x)


def spike_slab_rbm(
    n_visible: int,
    n_hidden: int,
    pool_size: int,
    slab_penalty: ArrayLike,
    radius: float,
) -> SpikeSlabRBM:
    """Create a spike-and-slab RBM.

    Factory function accepting any array-like slab penalty of shape (pool_size, n_hidden).

    Args:
        n_visible: Number of visible units
        n_hidden: Number of hidden units
        pool_size: Number of slab variables per hidden unit
        slab_penalty: Slab precisions, all positive
        radius: Soft bound on the norm of sampled visible vectors

    Returns:
        SpikeSlabRBM instance

    Raises:
        DimensionMismatchError: If a size is not positive or slab_penalty has the wrong shape
        InvalidPenaltyError: If a slab precision or the radius is not positive
    """
    penalty = np.asarray(slab_penalty, dtype=np.float64)
    if penalty.ndim != 2:
        raise DimensionMismatchError(
            f"slab_penalty must be a matrix, got {penalty.ndim} dimensions"
        )
    return SpikeSlabRBM(
        n_visible=n_visible,
        n_hidden=n_hidden,
        pool_size=pool_size,
        slab_penalty=tuple(tuple(row) for row in penalty.tolist()),
        radius=radius,
    )
