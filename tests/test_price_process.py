"""Tests for the GBM price process and tick engine."""

import asyncio
import math

import numpy as np
import pytest

from papermarket.simulation.price_process import PriceProcess, gaussian_random, MIN_PRICE
from papermarket.simulation.tick_engine import TickEngine
from conftest import make_state

# 2024-01-02 10:00 IST and the next day
DAY_ONE_MS = 1_704_169_800_000
DAY_TWO_MS = DAY_ONE_MS + 24 * 3600 * 1000


class TestGaussianRandom:
    def test_roughly_standard_normal(self, rng):
        samples = np.array([gaussian_random(rng) for _ in range(20_000)])

        assert abs(samples.mean()) < 0.05
        assert abs(samples.std() - 1.0) < 0.05


class TestPriceProcess:
    """Tests for per-symbol price evolution."""

    def test_price_invariants_over_many_ticks(self, rng):
        """Price stays >= 1 and within the day range on every tick."""
        state = make_state(price=3.0, volatility=5.0)  # violent, near the floor
        process = PriceProcess(state, rng=rng)

        for i in range(5000):
            tick = process.step(DAY_ONE_MS + i)
            assert tick.price >= MIN_PRICE
            assert tick.day_low <= tick.price <= tick.day_high
            assert math.isfinite(tick.price)

    def test_volume_accumulates(self, rng):
        state = make_state(avg_volume=6_000_000)
        process = PriceProcess(state, rng=rng)

        first = process.step(DAY_ONE_MS)
        second = process.step(DAY_ONE_MS + 1000)

        assert first.last_trade_qty >= 50
        assert second.volume == first.volume + second.last_trade_qty
        assert state.last_tick_time == DAY_ONE_MS + 1000

    def test_seeded_processes_are_reproducible(self):
        a = PriceProcess(make_state(), rng=np.random.default_rng(7))
        b = PriceProcess(make_state(), rng=np.random.default_rng(7))

        prices_a = [a.step(DAY_ONE_MS).price for _ in range(50)]
        prices_b = [b.step(DAY_ONE_MS).price for _ in range(50)]

        assert prices_a == prices_b

    def test_start_session(self, rng):
        state = make_state(price=100.0)
        process = PriceProcess(state, rng=rng)
        for _ in range(10):
            process.step(DAY_ONE_MS)

        process.start_session()

        assert state.previous_close == state.current_price
        assert state.day_high == state.day_low == state.current_price
        assert state.volume == 0
        assert state.change == 0.0


class TestTickEngine:
    """Tests for the tick scheduler."""

    def test_tick_updates_every_symbol(self, states, rng):
        engine = TickEngine(states, rng=rng)
        batches = []
        engine.add_listener(batches.append)

        batch = engine.tick(DAY_ONE_MS)

        assert [t.symbol for t in batch] == list(states)
        assert batches == [batch]
        assert engine.tick_count == 1
        for tick in batch:
            state = states[tick.symbol]
            assert tick.price == state.current_price
            assert tick.change == pytest.approx(state.current_price - state.previous_close, abs=0.01)

    def test_failing_listener_does_not_stop_others(self, states, rng):
        engine = TickEngine(states, rng=rng)
        received = []

        def broken(batch):
            raise RuntimeError("boom")

        engine.add_listener(broken)
        engine.add_listener(received.append)

        engine.tick(DAY_ONE_MS)
        engine.tick(DAY_ONE_MS + 1000)

        assert len(received) == 2

    def test_remove_listener(self, states, rng):
        engine = TickEngine(states, rng=rng)
        received = []
        unsubscribe = engine.add_listener(received.append)

        engine.tick(DAY_ONE_MS)
        unsubscribe()
        engine.tick(DAY_ONE_MS + 1000)

        assert len(received) == 1

    def test_session_rolls_on_new_market_date(self, states, rng):
        engine = TickEngine(states, rng=rng)
        engine.tick(DAY_ONE_MS)
        engine.tick(DAY_ONE_MS + 1000)
        last_prices = engine.price_snapshot()

        engine.tick(DAY_TWO_MS)

        for symbol, state in states.items():
            assert state.previous_close == last_prices[symbol]

    def test_run_and_stop(self, states, rng):
        engine = TickEngine(states, rng=rng, interval=0.01)

        async def scenario():
            engine.start()
            assert engine.is_running
            await asyncio.sleep(0.1)
            await engine.stop()

        asyncio.run(scenario())

        assert engine.tick_count >= 2
        assert not engine.is_running
