"""Tests for the spike-and-slab RBM.

Tests parameter layout, conditionals, samplers, free energy, and phase statistics.
"""

import math

import jax
import jax.numpy as jnp
import pytest
from jax import Array

from spikeslab import (
    MAX_VISIBLE_TRIALS,
    DimensionMismatchError,
    InvalidPenaltyError,
    SpikeSlabRBM,
    spike_slab_rbm,
)

jax.config.update("jax_platform_name", "cpu")

# Tolerances
RTOL = 1e-5
ATOL = 1e-6

SLAB_PENALTY = [[1.0, 2.0, 4.0], [0.5, 1.0, 3.0]]


@pytest.fixture
def key() -> Array:
    """Random key for tests."""
    return jax.random.PRNGKey(42)


@pytest.fixture
def model() -> SpikeSlabRBM:
    """Create an ssRBM with 4 visible units, 3 hidden units and pools of 2."""
    return spike_slab_rbm(4, 3, 2, SLAB_PENALTY, radius=1e6)


@pytest.fixture
def params(model: SpikeSlabRBM, key: Array) -> Array:
    """Generate random parameters with a positive visible penalty."""
    weight_key, bias_key, penalty_key = jax.random.split(key, 3)
    weight = 0.5 * jax.random.normal(weight_key, (model.fst_man.dim,))
    spike_bias = jax.random.uniform(bias_key, (model.n_hidden,), minval=-1.0, maxval=1.0)
    visible_penalty = jax.random.uniform(
        penalty_key, (model.n_visible,), minval=0.5, maxval=2.0
    )
    return model.join_coords(weight, spike_bias, visible_penalty)


@pytest.fixture
def visible(model: SpikeSlabRBM) -> Array:
    """A fixed visible vector."""
    return jax.random.normal(jax.random.PRNGKey(7), (model.n_visible,))


class TestConstruction:
    """Test validation of sizes and hyperparameters."""

    def test_dimensions(self, model: SpikeSlabRBM) -> None:
        """Test the parameter length is V*P*H + H + V."""
        assert model.dim == 4 * 2 * 3 + 3 + 4
        assert model.latent_dim == 3 + 2 * 3
        assert model.zeros().shape == (model.dim,)

    @pytest.mark.parametrize(
        ("n_visible", "n_hidden", "pool_size"), [(2, 1, 1), (4, 3, 2), (5, 2, 3)]
    )
    def test_offsets(self, n_visible: int, n_hidden: int, pool_size: int) -> None:
        """Test the blocks are laid out as weight, spike bias, visible penalty."""
        model = spike_slab_rbm(
            n_visible, n_hidden, pool_size, jnp.ones((pool_size, n_hidden)), 1.0
        )
        n_weight = n_visible * pool_size * n_hidden
        assert model.weight_offset == 0
        assert model.spike_bias_offset == n_weight
        assert model.visible_penalty_offset == n_weight + n_hidden
        assert model.dim == n_weight + n_hidden + n_visible

    def test_slab_penalty_shape_mismatch(self) -> None:
        with pytest.raises(DimensionMismatchError):
            spike_slab_rbm(4, 3, 2, jnp.ones((3, 2)), 1.0)

    def test_slab_penalty_not_matrix(self) -> None:
        with pytest.raises(DimensionMismatchError):
            spike_slab_rbm(4, 3, 1, jnp.ones(3), 1.0)

    def test_non_positive_size(self) -> None:
        with pytest.raises(DimensionMismatchError):
            SpikeSlabRBM(0, 1, 1, ((),), 1.0)

    @pytest.mark.parametrize("bad", [0.0, -1.0, math.inf, math.nan])
    def test_invalid_slab_penalty(self, bad: float) -> None:
        with pytest.raises(InvalidPenaltyError):
            spike_slab_rbm(2, 2, 1, [[1.0, bad]], 1.0)

    @pytest.mark.parametrize("bad", [0.0, -3.0, math.nan])
    def test_invalid_radius(self, bad: float) -> None:
        with pytest.raises(InvalidPenaltyError):
            spike_slab_rbm(2, 1, 1, [[1.0]], bad)

    def test_hashable_and_comparable(self) -> None:
        """Test models built from equal inputs are equal and hashable."""
        a = spike_slab_rbm(4, 3, 2, SLAB_PENALTY, 5.0)
        b = SpikeSlabRBM(4, 3, 2, jnp.asarray(SLAB_PENALTY), 5)
        assert a == b
        assert hash(a) == hash(b)
        assert jnp.allclose(a.slab_precision, jnp.asarray(SLAB_PENALTY))


class TestParameterViews:
    """Test the structured views of the flat parameter array."""

    def test_view_shapes(self, model: SpikeSlabRBM, params: Array) -> None:
        weight, spike_bias, visible_penalty = model.reset(params)
        assert weight.shape == (4, 2, 3)
        assert spike_bias.shape == (3,)
        assert visible_penalty.shape == (4,)

    def test_flat_write_appears_in_weight_view(self, model: SpikeSlabRBM) -> None:
        """Test a value written at a weight offset shows up in the weight view."""
        j, k, i = 2, 1, 1
        index = (
            model.weight_offset
            + j
            + model.n_visible * k
            + model.n_visible * model.pool_size * i
        )
        params = model.zeros().at[index].set(3.0)
        weight, spike_bias, visible_penalty = model.reset(params)

        assert weight[j, k, i] == 3.0
        assert jnp.sum(weight) == 3.0
        assert jnp.all(spike_bias == 0.0)
        assert jnp.all(visible_penalty == 0.0)

    def test_hidden_unit_weights_are_contiguous(self, model: SpikeSlabRBM) -> None:
        """Test the weights of one hidden unit occupy one contiguous range."""
        block = model.n_visible * model.pool_size
        params = model.zeros().at[block : 2 * block].set(1.0)
        weight, _, _ = model.reset(params)

        assert jnp.all(weight[:, :, 1] == 1.0)
        assert jnp.sum(weight) == block

    def test_view_write_appears_in_flat_array(
        self, model: SpikeSlabRBM, params: Array
    ) -> None:
        """Test a view written back with join_params updates the flat array."""
        weight, spike_bias, visible_penalty = model.reset(params)
        weight = weight.at[1, 0, 2].set(-2.0)
        spike_bias = spike_bias.at[0].set(5.0)

        updated = model.join_params(weight, spike_bias, visible_penalty)
        index = 1 + model.n_visible * model.pool_size * 2

        assert updated[model.weight_offset + index] == -2.0
        assert updated[model.spike_bias_offset] == 5.0
        assert jnp.allclose(
            updated[model.visible_penalty_offset :], visible_penalty
        )

    def test_split_join_round_trip(self, model: SpikeSlabRBM, params: Array) -> None:
        recovered = model.join_params(*model.split_params(params))
        assert jnp.array_equal(recovered, params)

    def test_reset_rejects_wrong_length(self, model: SpikeSlabRBM) -> None:
        with pytest.raises(DimensionMismatchError):
            model.reset(jnp.zeros(model.dim + 1))

    def test_latent_round_trip(self, model: SpikeSlabRBM, key: Array) -> None:
        latent = jax.random.normal(key, (model.latent_dim,))
        spike, slab = model.split_latent(latent)
        assert spike.shape == (model.n_hidden,)
        assert slab.shape == (model.pool_size, model.n_hidden)
        assert jnp.array_equal(slab[:, 0], latent[3:5])
        assert jnp.array_equal(model.join_latent(spike, slab), latent)


class TestConditionals:
    """Test the conditional means."""

    def test_spike_mean_in_unit_interval(
        self, model: SpikeSlabRBM, params: Array, key: Array
    ) -> None:
        vs = jax.random.normal(key, (100, model.n_visible))
        means = jax.vmap(model.spike_mean, in_axes=(None, 0))(params, vs)
        assert jnp.all(means > 0.0)
        assert jnp.all(means < 1.0)

    def test_spike_mean_matches_quadratic_form(
        self, model: SpikeSlabRBM, params: Array, visible: Array
    ) -> None:
        """Test spike mean against the per-unit matrix expression."""
        weight, spike_bias, _ = model.reset(params)
        alpha = model.slab_precision
        expected = []
        for i in range(model.n_hidden):
            w_i = weight[:, :, i]
            quad = visible @ w_i @ jnp.diag(1.0 / alpha[:, i]) @ w_i.T @ visible
            expected.append(jax.nn.sigmoid(0.5 * quad + spike_bias[i]))

        assert jnp.allclose(
            model.spike_mean(params, visible), jnp.array(expected), rtol=RTOL, atol=ATOL
        )

    def test_slab_mean_gating(
        self, model: SpikeSlabRBM, params: Array, key: Array
    ) -> None:
        """Test slab means vanish exactly where the spike is off."""
        spike = jnp.array([1.0, 0.0, 1.0])
        vs = jax.random.normal(key, (50, model.n_visible))
        slabs = jax.vmap(model.slab_mean, in_axes=(None, 0, None))(params, vs, spike)

        assert jnp.all(slabs[:, :, 1] == 0.0)
        assert jnp.any(slabs[:, :, 0] != 0.0)

    def test_slab_mean_formula(
        self, model: SpikeSlabRBM, params: Array, visible: Array
    ) -> None:
        weight, _, _ = model.reset(params)
        alpha = model.slab_precision
        spike = jnp.array([1.0, 1.0, 0.0])
        slab = model.slab_mean(params, visible, spike)

        for i in range(model.n_hidden):
            expected = spike[i] * jnp.diag(1.0 / alpha[:, i]) @ weight[:, :, i].T @ visible
            assert jnp.allclose(slab[:, i], expected, rtol=RTOL, atol=ATOL)

    def test_visible_mean_formula(
        self, model: SpikeSlabRBM, params: Array, key: Array
    ) -> None:
        weight, _, visible_penalty = model.reset(params)
        latent = jax.random.normal(key, (model.latent_dim,))
        spike, slab = model.split_latent(latent)

        total = jnp.zeros(model.n_visible)
        for i in range(model.n_hidden):
            total = total + weight[:, :, i] @ slab[:, i] * spike[i]
        expected = total / visible_penalty

        assert jnp.allclose(
            model.visible_mean(params, latent), expected, rtol=RTOL, atol=ATOL
        )

    def test_hidden_mean(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        """Test hidden mean holds spike means and slab means conditioned on a sampled spike."""
        latent = model.hidden_mean(key, params, visible)
        spike_part, slab_part = model.split_latent(latent)

        spike_mean = model.spike_mean(params, visible)
        sampled = model.sample_spike(key, spike_mean)

        assert jnp.allclose(spike_part, spike_mean, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(
            slab_part, model.slab_mean(params, visible, sampled), rtol=RTOL, atol=ATOL
        )


class TestSampling:
    """Test the samplers."""

    def test_spike_sample_frequencies(self, key: Array) -> None:
        model = spike_slab_rbm(2, 3, 1, [[1.0, 1.0, 1.0]], 1.0)
        spike_mean = jnp.array([0.1, 0.5, 0.9])
        keys = jax.random.split(key, 20000)
        spikes = jax.vmap(model.sample_spike, in_axes=(0, None))(keys, spike_mean)

        assert set(jnp.unique(spikes).tolist()) <= {0.0, 1.0}
        assert jnp.allclose(jnp.mean(spikes, axis=0), spike_mean, atol=0.02)

    def test_slab_sample_moments(
        self, model: SpikeSlabRBM, params: Array, key: Array
    ) -> None:
        """Test slab samples have the slab mean and variance 1 / slab_penalty."""
        slab_mean = jnp.arange(6.0).reshape(2, 3)
        keys = jax.random.split(key, 20000)
        slabs = jax.vmap(model.sample_slab, in_axes=(0, None, None))(
            keys, params, slab_mean
        )

        assert jnp.allclose(jnp.mean(slabs, axis=0), slab_mean, atol=0.05)
        assert jnp.allclose(
            jnp.var(slabs, axis=0), 1.0 / model.slab_precision, rtol=0.05
        )

    def test_sample_hidden(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        latent = model.sample_hidden(key, params, visible)
        spike, slab = model.split_latent(latent)

        assert latent.shape == (model.latent_dim,)
        assert set(jnp.unique(spike).tolist()) <= {0.0, 1.0}
        assert jnp.all(jnp.isfinite(slab))

    def test_wide_radius_accepts_first_draw(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        hidden_key, visible_key = jax.random.split(key)
        latent = model.sample_hidden(hidden_key, params, visible)
        sample, n_trials = model.visible_rejection_sample(visible_key, params, latent)

        assert int(n_trials) == 1
        assert sample.shape == (model.n_visible,)

    def test_tight_radius_returns_last_draw(
        self, params: Array, visible: Array, key: Array
    ) -> None:
        """Test an unsatisfiable radius exhausts the trials and still returns a sample."""
        model = spike_slab_rbm(4, 3, 2, SLAB_PENALTY, radius=1e-6)
        hidden_key, visible_key = jax.random.split(key)
        latent = model.sample_hidden(hidden_key, params, visible)
        sample, n_trials = model.visible_rejection_sample(visible_key, params, latent)

        assert int(n_trials) == MAX_VISIBLE_TRIALS
        assert jnp.linalg.norm(sample) >= model.radius
        assert jnp.all(jnp.isfinite(sample))

    def test_visible_sample_moments(self, key: Array) -> None:
        """Test visible samples are centred on the visible mean with variance 1 / visible_penalty."""
        model = spike_slab_rbm(2, 1, 1, [[1.0]], radius=1e6)
        params = model.join_params(
            jnp.array([1.0, -1.0]).reshape(2, 1, 1), jnp.zeros(1), jnp.array([2.0, 4.0])
        )
        latent = jnp.array([1.0, 2.0])
        keys = jax.random.split(key, 20000)
        samples = jax.vmap(model.sample_visible, in_axes=(0, None, None))(
            keys, params, latent
        )

        assert jnp.allclose(jnp.mean(samples, axis=0), jnp.array([1.0, -0.5]), atol=0.03)
        assert jnp.allclose(jnp.var(samples, axis=0), jnp.array([0.5, 0.25]), rtol=0.05)

    def test_sampling_is_reproducible(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        first = model.gibbs_step(key, params, visible)
        second = model.gibbs_step(key, params, visible)
        assert jnp.array_equal(first, second)

    def test_gibbs_step_under_jit(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        jitted = jax.jit(model.gibbs_step)(key, params, visible)
        assert jitted.shape == (model.n_visible,)
        assert jnp.allclose(
            jitted, model.gibbs_step(key, params, visible), rtol=RTOL, atol=ATOL
        )


class TestFreeEnergy:
    """Test the closed-form free energy."""

    @pytest.fixture
    def fixture_model(self) -> SpikeSlabRBM:
        return spike_slab_rbm(4, 2, 1, jnp.ones((1, 2)), radius=1e6)

    @pytest.fixture
    def fixture_params(self, fixture_model: SpikeSlabRBM) -> Array:
        weight = jnp.array(
            [
                [[0.1, -0.5]],
                [[0.2, 0.25]],
                [[0.3, 0.0]],
                [[0.4, 0.5]],
            ]
        )
        return fixture_model.join_params(weight, jnp.zeros(2), jnp.ones(4))

    def test_hand_computed_value(
        self, fixture_model: SpikeSlabRBM, fixture_params: Array
    ) -> None:
        """Test the free energy against the three terms evaluated by hand.

        For v = [1, 0, 1, 1] the projections are 0.8 and 0.0, so
        F = 1.5 - log(2 pi) - softplus(0.32) - softplus(0).
        """
        v = jnp.array([1.0, 0.0, 1.0, 1.0])
        expected = 1.5 - math.log(2 * math.pi) - math.log1p(math.exp(0.32)) - math.log(2)

        free_energy = fixture_model.free_energy(fixture_params, v)

        assert jnp.allclose(free_energy, expected, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(free_energy, -1.896917184149, rtol=RTOL, atol=ATOL)

    def test_hand_computed_spike_mean(
        self, fixture_model: SpikeSlabRBM, fixture_params: Array
    ) -> None:
        v = jnp.array([1.0, 0.0, 1.0, 1.0])
        assert jnp.allclose(
            fixture_model.spike_mean(fixture_params, v),
            jnp.array([0.579324252149, 0.5]),
            rtol=RTOL,
            atol=ATOL,
        )

    def test_free_energy_is_pure(
        self, model: SpikeSlabRBM, params: Array, visible: Array
    ) -> None:
        """Test repeated, jitted and copied-input evaluations agree."""
        first = model.free_energy(params, visible)
        second = model.free_energy(params, jnp.array(visible))
        jitted = jax.jit(model.free_energy)(params, visible)

        assert first == second
        assert jnp.allclose(first, jitted, rtol=RTOL, atol=ATOL)

    def test_gradient_matches_phase_statistics(
        self, model: SpikeSlabRBM, params: Array, visible: Array
    ) -> None:
        """Test -dF/dparams against the conditional means.

        The spike bias and visible penalty derivatives are the phase statistics, and the weight derivative is the phase statistic with every spike switched on.
        """
        grad = jax.grad(model.free_energy)(params, visible)
        weight_grad, spike_bias_grad, visible_penalty_grad = model.split_params(-grad)

        spike_mean = model.spike_mean(params, visible)
        slab_on = model.slab_mean(params, visible, jnp.ones(model.n_hidden))
        expected_weight = jnp.einsum("j,ki->jki", visible, slab_on * spike_mean)

        assert jnp.allclose(spike_bias_grad, spike_mean, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(visible_penalty_grad, -0.5 * visible**2, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(weight_grad, expected_weight, rtol=1e-4, atol=1e-5)

    def test_mean_free_energy(self, model: SpikeSlabRBM, params: Array, key: Array) -> None:
        xs = jax.random.normal(key, (10, model.n_visible))
        expected = jnp.mean(jnp.array([model.free_energy(params, x) for x in xs]))
        assert jnp.allclose(model.mean_free_energy(params, xs), expected, rtol=RTOL)

    def test_evaluate_is_zero(self, model: SpikeSlabRBM, params: Array, key: Array) -> None:
        xs = jax.random.normal(key, (5, model.n_visible))
        assert model.evaluate(params, xs) == 0.0


class TestPhases:
    """Test positive and negative phase statistics."""

    @pytest.mark.parametrize(
        ("n_visible", "n_hidden", "pool_size"), [(2, 1, 1), (4, 3, 2), (5, 2, 3)]
    )
    def test_gradient_length(
        self, n_visible: int, n_hidden: int, pool_size: int, key: Array
    ) -> None:
        model = spike_slab_rbm(
            n_visible, n_hidden, pool_size, jnp.ones((pool_size, n_hidden)), 1.0
        )
        params = model.initialize(key)
        x = jnp.ones(n_visible)
        expected = n_visible * pool_size * n_hidden + n_hidden + n_visible

        assert model.positive_phase(key, params, x).shape == (expected,)
        assert model.negative_phase(key, params, x).shape == (expected,)

    def test_phase_statistics(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        grad = model.positive_phase(key, params, visible)
        weight_grad, spike_bias_grad, visible_penalty_grad = model.split_params(grad)

        spike_mean = model.spike_mean(params, visible)
        spike = model.sample_spike(key, spike_mean)
        slab = model.slab_mean(params, visible, spike)

        for i in range(model.n_hidden):
            expected = jnp.outer(visible, slab[:, i]) * spike_mean[i]
            assert jnp.allclose(weight_grad[:, :, i], expected, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(spike_bias_grad, spike_mean, rtol=RTOL, atol=ATOL)
        assert jnp.allclose(visible_penalty_grad, -0.5 * visible**2, rtol=RTOL, atol=ATOL)

    def test_phases_share_formulas(
        self, model: SpikeSlabRBM, params: Array, visible: Array, key: Array
    ) -> None:
        """Test the negative phase uses the positive-phase formulas without a sign flip."""
        positive = model.positive_phase(key, params, visible)
        negative = model.negative_phase(key, params, visible)
        assert jnp.array_equal(positive, negative)

    def test_initialize(self, model: SpikeSlabRBM, key: Array) -> None:
        params = model.initialize(key, shape=0.1)
        weight, spike_bias, visible_penalty = model.reset(params)

        assert jnp.all(spike_bias == 0.0)
        assert jnp.all(visible_penalty == 1.0)
        assert float(jnp.std(weight)) < 0.5
