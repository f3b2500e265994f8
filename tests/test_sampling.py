"""Tests for Gamma/Beta sampling."""

import numpy as np
import pytest

from src.engine.sampling import BetaSampler, beta_mean, beta_std


@pytest.fixture
def sampler():
    return BetaSampler(seed=1234)


@pytest.mark.parametrize("alpha,beta", [(1, 1), (1, 50), (50, 1), (3.5, 7.2), (200, 300)])
def test_beta_samples_stay_in_unit_interval(sampler, alpha, beta):
    """Samples for alpha, beta >= 1 are always within [0, 1]."""
    draws = np.array([sampler.sample_beta(alpha, beta) for _ in range(10_000)])

    assert draws.min() >= 0.0
    assert draws.max() <= 1.0


def test_uniform_prior_mean_converges_to_half(sampler):
    draws = [sampler.sample_beta(1, 1) for _ in range(10_000)]

    assert np.mean(draws) == pytest.approx(0.5, abs=0.02)


def test_beta_sample_mean_matches_posterior_mean(sampler):
    draws = [sampler.sample_beta(30, 70) for _ in range(5_000)]

    assert np.mean(draws) == pytest.approx(0.3, abs=0.01)


def test_expected_value_increases_with_alpha():
    means = [beta_mean(alpha, 5) for alpha in range(1, 50)]

    assert all(later > earlier for earlier, later in zip(means, means[1:]))


def test_gamma_mean_for_large_and_small_shapes(sampler):
    large = [sampler.sample_gamma(4.0) for _ in range(5_000)]
    small = [sampler.sample_gamma(0.5) for _ in range(5_000)]

    assert np.mean(large) == pytest.approx(4.0, rel=0.05)
    assert np.mean(small) == pytest.approx(0.5, rel=0.1)
    assert min(small) >= 0.0


def test_gamma_scale_multiplies_mean(sampler):
    draws = [sampler.sample_gamma(2.0, scale=3.0) for _ in range(5_000)]

    assert np.mean(draws) == pytest.approx(6.0, rel=0.05)


@pytest.mark.parametrize("shape,scale", [(0, 1), (-1, 1), (1, 0)])
def test_gamma_rejects_non_positive_parameters(sampler, shape, scale):
    with pytest.raises(ValueError):
        sampler.sample_gamma(shape, scale)


def test_seeded_samplers_are_reproducible():
    first = BetaSampler(seed=7)
    second = BetaSampler(seed=7)

    a = [first.sample_beta(2, 9) for _ in range(100)]
    b = [second.sample_beta(2, 9) for _ in range(100)]

    np.testing.assert_array_equal(a, b)


def test_beta_std_shrinks_with_more_observations():
    assert beta_std(1, 1) == pytest.approx(np.sqrt(1 / 12))
    assert beta_std(11, 91) < beta_std(2, 10)
