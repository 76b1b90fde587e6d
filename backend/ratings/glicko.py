"""Glicko-2 rating calculation.

Follows Mark Glickman's "Example of the Glicko-2 system", with the
Illinois variant of regula falsi for the volatility update. Everything here
is pure: no I/O, no shared state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from ratings.config import DEFAULT_EPSILON, DEFAULT_MAX_ITERATIONS, DEFAULT_TAU
from ratings.errors import ConfigError, NumericDivergence

GLICKO2_SCALE = 173.7178
DEFAULT_RATING = 1500.0
DEFAULT_RD = 350.0
DEFAULT_VOLATILITY = 0.06
MIN_RD = 30.0
MAX_RD = 350.0

# Score for each pairwise outcome
WIN = 1.0
DRAW = 0.5
LOSS = 0.0


@dataclass(frozen=True)
class Glicko2Params:
    tau: float = DEFAULT_TAU
    epsilon: float = DEFAULT_EPSILON
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    default_rating: float = DEFAULT_RATING
    default_rd: float = DEFAULT_RD
    default_vol: float = DEFAULT_VOLATILITY
    min_rd: float = MIN_RD
    max_rd: float = MAX_RD

    def validate(self) -> Glicko2Params:
        """Check the system constants.

        Raises:
            ConfigError: If tau, epsilon or the iteration cap is unusable.
        """
        if not math.isfinite(self.tau) or self.tau <= 0:
            raise ConfigError(f"tau must be positive, got {self.tau}")
        if not math.isfinite(self.epsilon) or self.epsilon <= 0:
            raise ConfigError(f"epsilon must be positive, got {self.epsilon}")
        if self.max_iterations < 1:
            raise ConfigError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if self.default_vol <= 0:
            raise ConfigError(f"default volatility must be positive, got {self.default_vol}")
        if not 0 < self.min_rd <= self.max_rd:
            raise ConfigError(f"invalid RD bounds: [{self.min_rd}, {self.max_rd}]")
        return self


@dataclass(frozen=True)
class RatingState:
    rating: float
    rd: float
    vol: float


@dataclass(frozen=True)
class OpponentResult:
    """One pairwise game as seen from the rated player's side."""

    opp_rating: float
    opp_rd: float
    score: float


def default_state(params: Glicko2Params) -> RatingState:
    return RatingState(params.default_rating, params.default_rd, params.default_vol)


def to_mu(rating: float) -> float:
    return (rating - DEFAULT_RATING) / GLICKO2_SCALE


def to_phi(rd: float) -> float:
    return rd / GLICKO2_SCALE


def from_mu(mu: float) -> float:
    return mu * GLICKO2_SCALE + DEFAULT_RATING


def from_phi(phi: float) -> float:
    return phi * GLICKO2_SCALE


def g(phi: float) -> float:
    return 1.0 / math.sqrt(1.0 + 3.0 * phi * phi / (math.pi * math.pi))


def expected_score(mu: float, mu_j: float, phi_j: float) -> float:
    """Probability the player beats opponent j on the Glicko-2 scale."""
    return 1.0 / (1.0 + math.exp(-g(phi_j) * (mu - mu_j)))


def _clamp_rd(rd: float, params: Glicko2Params) -> float:
    return min(max(rd, params.min_rd), params.max_rd)


def solve_volatility(
    phi: float,
    sigma: float,
    v: float,
    delta: float,
    params: Glicko2Params,
) -> float:
    """Solve the volatility update equation for sigma'.

    Raises:
        NumericDivergence: If the root is not bracketed or not reached within
            params.max_iterations.
    """
    a = math.log(sigma * sigma)
    tau = params.tau
    phi_sq = phi * phi

    def f(x: float) -> float:
        ex = math.exp(x)
        denom = phi_sq + v + ex
        return ex * (delta * delta - phi_sq - v - ex) / (2.0 * denom * denom) - (x - a) / (tau * tau)

    lower = a
    if delta * delta > phi_sq + v:
        upper = math.log(delta * delta - phi_sq - v)
    else:
        k = 1
        while f(a - k * tau) < 0:
            k += 1
            if k > params.max_iterations:
                raise NumericDivergence("Could not bracket the volatility root")
        upper = a - k * tau

    f_lower = f(lower)
    f_upper = f(upper)
    iterations = 0
    while abs(upper - lower) > params.epsilon:
        iterations += 1
        if iterations > params.max_iterations:
            raise NumericDivergence(
                f"Volatility solver did not converge in {params.max_iterations} iterations"
            )
        candidate = lower + (lower - upper) * f_lower / (f_upper - f_lower)
        f_candidate = f(candidate)
        if not math.isfinite(f_candidate):
            raise NumericDivergence("Volatility solver produced a non-finite value")
        if f_candidate * f_upper <= 0:
            lower, f_lower = upper, f_upper
        else:
            f_lower = f_lower / 2.0
        upper, f_upper = candidate, f_candidate

    return math.exp(lower / 2.0)


def update_rating(
    current: RatingState,
    results: list[OpponentResult],
    params: Glicko2Params = Glicko2Params(),
    elapsed_periods: int = 1,
) -> RatingState:
    """Rate one player over one rating period.

    Args:
        current: Rating at the start of the period.
        results: Pairwise games played in the period. Empty means inactive.
        params: System constants.
        elapsed_periods: Periods since the player's last update; only used
            to inflate RD for an inactive player.

    Returns:
        Updated rating state with RD clamped to [params.min_rd, params.max_rd].

    Raises:
        ValueError: If a score is outside [0, 1].
        NumericDivergence: If the volatility update fails to converge.
    """
    phi = to_phi(current.rd)
    sigma = current.vol

    if not results:
        periods = max(elapsed_periods, 1)
        phi_star = math.sqrt(phi * phi + sigma * sigma * periods)
        return RatingState(
            rating=current.rating,
            rd=_clamp_rd(from_phi(phi_star), params),
            vol=sigma,
        )

    mu = to_mu(current.rating)
    v_inv = 0.0
    improvement = 0.0
    for result in results:
        if not 0.0 <= result.score <= 1.0:
            raise ValueError(f"Score must be within [0, 1], got {result.score!r}")
        mu_j = to_mu(result.opp_rating)
        phi_j = to_phi(result.opp_rd)
        g_j = g(phi_j)
        e_j = expected_score(mu, mu_j, phi_j)
        v_inv += g_j * g_j * e_j * (1.0 - e_j)
        improvement += g_j * (result.score - e_j)

    if v_inv <= 0.0 or not math.isfinite(v_inv):
        raise NumericDivergence("Estimated variance is degenerate")

    v = 1.0 / v_inv
    delta = v * improvement

    sigma_prime = solve_volatility(phi, sigma, v, delta, params)

    phi_star = math.sqrt(phi * phi + sigma_prime * sigma_prime)
    phi_prime = 1.0 / math.sqrt(1.0 / (phi_star * phi_star) + 1.0 / v)
    mu_prime = mu + phi_prime * phi_prime * improvement

    return RatingState(
        rating=from_mu(mu_prime),
        rd=_clamp_rd(from_phi(phi_prime), params),
        vol=sigma_prime,
    )
