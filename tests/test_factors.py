from __future__ import annotations

import pytest

from factors.ema import EMAFactor, compute_ema
from factors.registry import build_factors, enrich_candles
from factors.rsi import RSIFactor, compute_rsi
from shared.config.schema import StrategyParameters
from shared.models.models import Candle


def _candles(prices: list[float]) -> list[Candle]:
    return [
        Candle(
            timestamp=i * 3_600_000,
            open=p,
            high=p + 1,
            low=p - 1,
            close=p,
            volume=1.0,
            display_time=f"2024-01-01 {i % 24:02d}:00:00",
        )
        for i, p in enumerate(prices)
    ]


def test_rsi_outputs_in_0_100_after_warmup():
    candles = _candles([1, 2, 3, 2, 1, 2, 3, 4, 3, 2, 3, 4, 5, 6, 7])
    RSIFactor(period=5).compute(candles)
    assert all(c.rsi is None for c in candles[:5])
    values = [c.rsi for c in candles[5:]]
    assert values and all(v is not None for v in values)
    assert all(0 <= v <= 100 for v in values)


def test_rsi_wilder_smoothing_values():
    candles = _candles([10, 11, 10, 11])
    compute_rsi(candles, 2)
    assert candles[0].rsi is None and candles[1].rsi is None
    assert abs(candles[2].rsi - 50.0) < 1e-9
    # avg_gain=(0.5+1)/2=0.75, avg_loss=(0.5+0)/2=0.25 -> RS=3
    assert abs(candles[3].rsi - 75.0) < 1e-9


def test_rsi_is_100_on_strictly_rising_series():
    candles = _candles([100 + i for i in range(20)])
    compute_rsi(candles, 14)
    assert all(c.rsi == 100.0 for c in candles[14:])


def test_rsi_skips_when_not_enough_candles():
    candles = _candles([1, 2, 3, 4, 5])
    compute_rsi(candles, 5)
    assert all(c.rsi is None for c in candles)


def test_ema_seeded_with_first_close_and_has_no_gaps():
    candles = _candles([10, 20, 20])
    compute_ema(candles, 3)
    assert candles[0].ema == 10
    # multiplier = 2 / (3 + 1) = 0.5
    assert abs(candles[1].ema - 15.0) < 1e-9
    assert abs(candles[2].ema - 17.5) < 1e-9
    assert all(c.ema is not None for c in candles)


def test_factor_period_must_be_positive():
    with pytest.raises(ValueError):
        RSIFactor(period=0)
    with pytest.raises(ValueError):
        EMAFactor(period=-1)


def test_build_factors_rejects_unknown_name():
    with pytest.raises(ValueError):
        build_factors([{"name": "macd", "params": {}}])


def test_enrich_candles_writes_both_indicators():
    candles = _candles([100 + (i % 5) for i in range(30)])
    enrich_candles(candles, StrategyParameters(rsi_period=5, ema_period=10))
    assert all(c.ema is not None for c in candles)
    assert all(c.rsi is None for c in candles[:5])
    assert all(c.has_indicators for c in candles[5:])


def test_indicators_match_explicit_recurrences():
    closes = [100 + 3 * ((i * 7) % 11) - 0.5 * (i % 4) for i in range(60)]
    candles = _candles(closes)
    compute_rsi(candles, 10)
    compute_ema(candles, 10)

    k = 2 / (10 + 1)
    ema = closes[0]
    for i, c in enumerate(candles):
        if i > 0:
            ema = closes[i] * k + ema * (1 - k)
        assert abs(c.ema - ema) < 1e-9

    deltas = [b - a for a, b in zip(closes, closes[1:])]
    avg_gain = sum(max(d, 0.0) for d in deltas[:10]) / 10
    avg_loss = sum(max(-d, 0.0) for d in deltas[:10]) / 10
    for i in range(10, len(closes)):
        if i > 10:
            d = deltas[i - 1]
            avg_gain = (avg_gain * 9 + max(d, 0.0)) / 10
            avg_loss = (avg_loss * 9 + max(-d, 0.0)) / 10
        expected = 100.0 if avg_loss == 0 else 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
        assert abs(candles[i].rsi - expected) < 1e-9
