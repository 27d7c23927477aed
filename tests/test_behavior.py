"""
Testes para o módulo liverelay.core.behavior.
"""

import asyncio
import random

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import FakeSession
from liverelay.core.behavior import (
    HOVER_JS,
    MEDIA_CONTAINER_SELECTORS,
    SCROLL_JS,
    BehaviorSimulator,
)


def _simulator(**kwargs):
    options = dict(rng=random.Random(0), moves=4, min_delay=0, max_delay=0)
    options.update(kwargs)
    return BehaviorSimulator(**options)


@pytest.mark.asyncio
async def test_simulation_moves_scrolls_and_hovers():
    session = FakeSession(responses={HOVER_JS: ".xgplayer"})

    await _simulator().simulate(session)

    width, height = session.profile.viewport
    assert len(session.mouse_moves) == 4
    assert all(0 <= x < width and 0 <= y < height for x, y in session.mouse_moves)

    scrolls = [arg for script, arg in session.evaluated_args if script == SCROLL_JS]
    assert len(scrolls) == 2
    assert 100 <= scrolls[0] <= 500
    assert scrolls[1] == 0

    hovers = [arg for script, arg in session.evaluated_args if script == HOVER_JS]
    assert hovers == [MEDIA_CONTAINER_SELECTORS]


@pytest.mark.asyncio
async def test_simulation_swallows_page_errors():
    session = FakeSession(responses={SCROLL_JS: PlaywrightError("Target page, context or browser has been closed")})

    await _simulator().simulate(session)

    assert HOVER_JS not in session.evaluated


class SlowPointerSession(FakeSession):
    async def mouse_move(self, x, y, steps=10):
        await super().mouse_move(x, y, steps)
        await asyncio.sleep(1.0)


@pytest.mark.asyncio
async def test_simulation_is_capped_in_time():
    session = SlowPointerSession()
    simulator = _simulator(max_total=0.05)

    loop = asyncio.get_running_loop()
    started = loop.time()
    await simulator.simulate(session)

    assert loop.time() - started < 1.0
    assert len(session.mouse_moves) == 1
    assert HOVER_JS not in session.evaluated


def test_pauses_fit_inside_the_total_cap():
    low, high = BehaviorSimulator().delay_bounds()
    assert 0 < low <= high
    assert high * (5 + 2) == pytest.approx(8.0 * BehaviorSimulator.PAUSE_SHARE)

    # Intervalos que já cabem no limite não são alterados
    assert _simulator(min_delay=0.1, max_delay=0.2, max_total=8.0).delay_bounds() == (0.1, 0.2)


@pytest.mark.asyncio
async def test_default_simulation_always_reaches_hover(monkeypatch):
    slept = []

    async def fake_sleep(delay):
        slept.append(delay)

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)

    for seed in range(200):
        slept.clear()
        session = FakeSession()
        await BehaviorSimulator(rng=random.Random(seed)).simulate(session)

        assert HOVER_JS in session.evaluated
        assert sum(slept) <= 8.0 * BehaviorSimulator.PAUSE_SHARE + 1e-9
