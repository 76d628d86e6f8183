"""Train a spike-and-slab RBM on noisy clusters with contrastive divergence.

This example demonstrates:
1. Building an ssRBM with fixed slab precisions
2. Training it with CD-1 and mini-batch SGD
3. Drawing samples from a Gibbs chain started at the data
4. Saving the trained model as JSON
"""

import logging
from pathlib import Path

import jax
import jax.numpy as jnp
from jax import Array

from spikeslab import TrainingConfig, save, spike_slab_rbm, train
from spikeslab.geometry import initialize_jax
from spikeslab.training import contrastive_divergence_sample

# Configuration
N_VISIBLE = 4
N_HIDDEN = 8
POOL_SIZE = 2
SLAB_PENALTY = 2.0
RADIUS = 20.0

N_OBS = 400
CLUSTER_STD = 0.3
N_GIBBS = 20

CONFIG = TrainingConfig(
    n_epochs=50,
    batch_size=20,
    learning_rate=1e-3,
    cd_steps=1,
    optimizer="sgd",
    momentum=0.5,
)

RESULTS_PATH = Path(__file__).parents[2] / "results" / "ssrbm_clusters" / "model.json"


def generate_data(key: Array) -> Array:
    """Generate samples from two clusters with opposite signs."""
    center_key, noise_key = jax.random.split(key)
    center = jax.random.normal(center_key, (N_VISIBLE,))
    signs = jnp.where(jnp.arange(N_OBS) % 2 == 0, 1.0, -1.0)
    noise = CLUSTER_STD * jax.random.normal(noise_key, (N_OBS, N_VISIBLE))
    return signs[:, None] * center + noise


def main():
    initialize_jax()
    logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    key = jax.random.PRNGKey(0)
    data_key, init_key, train_key, sample_key = jax.random.split(key, 4)

    data = generate_data(data_key)
    model = spike_slab_rbm(
        N_VISIBLE,
        N_HIDDEN,
        POOL_SIZE,
        jnp.full((POOL_SIZE, N_HIDDEN), SLAB_PENALTY),
        RADIUS,
    )
    params = model.initialize(init_key, shape=0.1)
    print(f"Model: {N_VISIBLE} visible, {N_HIDDEN} hidden, pools of {POOL_SIZE}")
    print(f"Initial mean free energy: {float(model.mean_free_energy(params, data)):.4f}")

    params, free_energies = train(train_key, model, params, data, CONFIG)
    print(f"Final mean free energy: {free_energies[-1]:.4f}")

    keys = jax.random.split(sample_key, 10)
    samples = jax.vmap(
        lambda k, x: contrastive_divergence_sample(k, model, params, x, N_GIBBS)
    )(keys, data[:10])
    print("Samples after", N_GIBBS, "Gibbs steps:")
    print(samples)

    save(RESULTS_PATH, model, params)
    print(f"Saved model to {RESULTS_PATH}")


if __name__ == "__main__":
    main()
