"""
Favorability scoring: converts an ordered rate series into buyer/seller scores.

The newest value is ranked against the values before it inside the lookback
window. Nothing here knows about currencies or storage; the engine
is a pure function of ``(series, ScoringConfig)``.

Steps
-----
1. window   = last ``lookback`` values; current = window[-1]; base = window[:-1].

2. percentile (0–1):
       (lt + 0.5 * eq + 0.5) / (n + 1), clamped to [0, 1]
   where lt / eq count base values strictly below / equal to ``current`` and
   n = len(base). Ties earn half credit; the +0.5 / +1 smoothing keeps the
   rank away from exactly 0 and 1. Empty base → 0.5 (no information yet).

3. buyer = round((1 − percentile) * 100), seller = 100 − buyer.
   A rate near the top of its history favours selling the base currency.

4. Momentum (only when momentum_weight > 0 and len(window) >= 10):
       EMA7 vs EMA28 over the full window, seeded at window[0].
       up   : ema7 > ema28 * 1.001
       down : ema7 < ema28 * 0.999
       flat : inside the ±0.1% band
   up   → seller = min(100, round(seller * (1 + w))), buyer = 100 − seller
   down → buyer  = min(100, round(buyer  * (1 + w))), seller = 100 − buyer

5. Robust z-score (len(base) >= 2):
       eps = max(1e-9, |mean| * 1e-6)
       z   = clamp((current − mean) / std, ±z_max)   if std >= eps
       z   = 0                                        otherwise
   std is the sample standard deviation (n − 1 denominator).

6. Labels per score, first match wins:
       >= 70 best | >= 55 good | > 45 neutral | > 30 poor | else worst

Rounding is half-up (``floor(x + 0.5)``) so 12.5 → 13, never banker's 12.
``buyer_score + seller_score == 100`` holds after every step.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fx_favorability.config import ScoringConfig

EMA_FAST_PERIOD = 7
EMA_SLOW_PERIOD = 28
MIN_MOMENTUM_SAMPLES = 10
TREND_BAND = 0.001


class Trend(str, Enum):
    """Direction of the fast/slow EMA crossover."""

    UP   = "up"
    DOWN = "down"
    FLAT = "flat"


class Label(str, Enum):
    """Categorical reading of a 0–100 score."""

    BEST    = "best"
    GOOD    = "good"
    NEUTRAL = "neutral"
    POOR    = "poor"
    WORST   = "worst"


@dataclass(frozen=True)
class FavorabilityScore:
    """Scored reading of the newest observation in a series.

    Attributes:
        buyer_score:  0–100; high when the current rate is low versus history.
        seller_score: 0–100; always ``100 - buyer_score``.
        percentile:   Smoothed rank of the current value among prior values.
        zscore:       Robust z-score, clamped to ``±z_max``; 0 when undefined.
        trend:        EMA momentum direction (``flat`` when disabled).
        buyer_label:  Label for ``buyer_score``.
        seller_label: Label for ``seller_score``.
    """

    buyer_score:  int
    seller_score: int
    percentile:   float
    zscore:       float
    trend:        Trend
    buyer_label:  Label
    seller_label: Label

    def to_dict(self) -> dict:
        return {
            "buyerScore":  self.buyer_score,
            "sellerScore": self.seller_score,
            "percentile":  self.percentile,
            "zscore":      self.zscore,
            "trend":       self.trend.value,
            "buyerLabel":  self.buyer_label.value,
            "sellerLabel": self.seller_label.value,
        }


class FavorabilityEngine:
    """Scores rate series with a fixed ``ScoringConfig``.

    Stateless apart from the immutable config; safe to share across threads.
    """

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def score(self, series: Sequence[float]) -> FavorabilityScore:
        """Score the last value of ``series`` against the values before it.

        Args:
            series: Observations in chronological order. May be empty.

        Returns:
            A ``FavorabilityScore``. Empty and single-value series produce the
            neutral reading (percentile 0.5, scores 50/50, z 0, trend flat).
        """
        cfg = self.config
        window = list(series[-cfg.lookback:])
        current = window[-1] if window else math.nan
        base = window[:-1]

        percentile = percentile_rank(base, current)
        buyer = round_half_up((1.0 - percentile) * 100.0)
        seller = 100 - buyer

        trend = Trend.FLAT
        if cfg.momentum_weight > 0 and len(window) >= MIN_MOMENTUM_SAMPLES:
            trend = momentum_trend(window)
            buyer, seller = apply_momentum(buyer, seller, trend, cfg.momentum_weight)

        zscore = robust_zscore(base, current, cfg.z_max)

        return FavorabilityScore(
            buyer_score=buyer,
            seller_score=seller,
            percentile=percentile,
            zscore=zscore,
            trend=trend,
            buyer_label=label_for(buyer),
            seller_label=label_for(seller),
        )


def score_favorability(
    series: Sequence[float],
    config: Optional[ScoringConfig] = None,
) -> FavorabilityScore:
    """Functional shortcut for ``FavorabilityEngine(config).score(series)``."""
    return FavorabilityEngine(config).score(series)


# ── Components ────────────────────────────────────────────────────────────────

def percentile_rank(base: Sequence[float], value: float) -> float:
    """Smoothed percentile rank of ``value`` within ``base`` (0.5 when empty)."""
    n = len(base)
    if n == 0:
        return 0.5
    lt = 0
    eq = 0
    for v in base:
        if v < value:
            lt += 1
        elif v == value:
            eq += 1
    return _clamp((lt + 0.5 * eq + 0.5) / (n + 1), 0.0, 1.0)


def ema(series: Sequence[float], period: int) -> float:
    """Exponential moving average seeded at ``series[0]``; NaN when empty."""
    if not series:
        return math.nan
    k = 2.0 / (period + 1)
    e = series[0]
    for value in series[1:]:
        e = value * k + e * (1.0 - k)
    return e


def momentum_trend(window: Sequence[float]) -> Trend:
    fast = ema(window, EMA_FAST_PERIOD)
    slow = ema(window, EMA_SLOW_PERIOD)
    if fast > slow * (1.0 + TREND_BAND):
        return Trend.UP
    if fast < slow * (1.0 - TREND_BAND):
        return Trend.DOWN
    return Trend.FLAT


def apply_momentum(
    buyer: int,
    seller: int,
    trend: Trend,
    weight: float,
) -> tuple[int, int]:
    """Boost the side favoured by ``trend``; the other side is derived from it.

    Returns:
        ``(buyer, seller)`` summing to 100.
    """
    if trend is Trend.UP:
        # rising rate: selling the base currency gets more attractive
        seller = min(100, round_half_up(seller * (1.0 + weight)))
        buyer = max(0, 100 - seller)
    elif trend is Trend.DOWN:
        buyer = min(100, round_half_up(buyer * (1.0 + weight)))
        seller = max(0, 100 - buyer)
    return buyer, seller


def mean(xs: Sequence[float]) -> float:
    return sum(xs) / max(len(xs), 1)


def sample_std(xs: Sequence[float], mu: float) -> float:
    """Sample standard deviation (n − 1); 0.0 for fewer than two values."""
    n = len(xs)
    if n < 2:
        return 0.0
    return math.sqrt(sum((x - mu) ** 2 for x in xs) / (n - 1))


def robust_zscore(base: Sequence[float], current: float, z_max: float) -> float:
    """Z-score of ``current`` against ``base`` with a relative epsilon floor."""
    if len(base) < 2:
        return 0.0
    mu = mean(base)
    std = sample_std(base, mu)
    eps = max(1e-9, abs(mu) * 1e-6)
    if std >= eps:
        return _clamp((current - mu) / std, -z_max, z_max)
    return 0.0


# (threshold, inclusive, label), evaluated top-down
_LABEL_BANDS: tuple[tuple[int, bool, Label], ...] = (
    (70, True,  Label.BEST),
    (55, True,  Label.GOOD),
    (45, False, Label.NEUTRAL),
    (30, False, Label.POOR),
)


def label_for(score: int) -> Label:
    """Map a 0–100 score to its label. 45 is ``poor``; 55 is ``good``."""
    for threshold, inclusive, label in _LABEL_BANDS:
        if score >= threshold if inclusive else score > threshold:
            return label
    return Label.WORST


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


# ── Helper ────────────────────────────────────────────────────────────────────

def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
