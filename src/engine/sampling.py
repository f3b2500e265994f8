"""Gamma and Beta variate sampling.

Beta(a, b) is drawn as X / (X + Y) with X ~ Gamma(a), Y ~ Gamma(b). Gamma
variates use the Marsaglia-Tsang acceptance-rejection method; shapes below 1
are boosted with Gamma(a) = Gamma(a + 1) * U^(1/a).

The random source is a ``numpy.random.Generator``. Pass a seed to get a
reproducible stream (tests); leave it unset to draw from OS entropy.
"""

import math
from typing import Optional

import numpy as np


class BetaSampler:
    """Seedable Beta/Gamma sampler."""

    def __init__(
        self,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.rng = rng if rng is not None else np.random.default_rng(seed)

    def uniform(self) -> float:
        return float(self.rng.random())

    def sample_gamma(self, shape: float, scale: float = 1.0) -> float:
        """Draw from Gamma(shape, scale).

        Raises:
            ValueError: If ``shape`` or ``scale`` is not positive.
        """
        if shape <= 0 or scale <= 0:
            raise ValueError(f"Gamma shape and scale must be positive, got {shape}, {scale}")

        if shape < 1:
            u = self.uniform()
            return self.sample_gamma(shape + 1, scale) * u ** (1.0 / shape)

        d = shape - 1.0 / 3.0
        c = 1.0 / math.sqrt(9.0 * d)

        while True:
            x = float(self.rng.standard_normal())
            v = 1.0 + c * x
            if v <= 0:
                continue

            v = v * v * v
            u = self.uniform()

            # Squeeze test first, full log test only when it fails.
            if u < 1.0 - 0.0331 * x ** 4:
                return scale * d * v
            if u > 0 and math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
                return scale * d * v

    def sample_beta(self, alpha: float, beta: float) -> float:
        """Draw from Beta(alpha, beta); Beta(1, 1) is a plain uniform draw."""
        if alpha == 1 and beta == 1:
            return self.uniform()

        x = self.sample_gamma(alpha)
        y = self.sample_gamma(beta)
        total = x + y
        if total == 0:
            # Both variates underflowed; fall back to the mean.
            return alpha / (alpha + beta)
        return x / total


def beta_mean(alpha: float, beta: float) -> float:
    return alpha / (alpha + beta)


def beta_std(alpha: float, beta: float) -> float:
    """Standard deviation of Beta(alpha, beta)."""
    total = alpha + beta
    variance = (alpha * beta) / (total * total * (total + 1))
    return math.sqrt(variance)
