"""
Tests for the model lifecycle state machine.
"""

import asyncio
import time

import pytest

from engines.face_verification.errors import ModelLoadFailure
from engines.face_verification.model_manager import ModelLifecycle, ModelState


class CountingLoader:
    """Loader that records calls and fails for the first `failures` attempts."""

    def __init__(self, failures=0, delay=0.0):
        self.calls = 0
        self.failures = failures
        self.delay = delay
        self.model = object()

    def __call__(self):
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.calls <= self.failures:
            raise RuntimeError(f"download failed ({self.calls})")
        return self.model


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestInitialState:
    def test_starts_unloaded(self):
        lifecycle = ModelLifecycle(loader=CountingLoader())
        assert lifecycle.state is ModelState.UNLOADED
        assert lifecycle.model is None
        assert lifecycle.loaded is False


class TestEnsureLoaded:
    def test_loads_once_and_reuses(self):
        loader = CountingLoader()
        lifecycle = ModelLifecycle(loader=loader)

        async def run():
            first = await lifecycle.ensure_loaded()
            second = await lifecycle.ensure_loaded()
            return first, second

        first, second = asyncio.run(run())
        assert first is loader.model
        assert second is loader.model
        assert loader.calls == 1
        assert lifecycle.state is ModelState.LOADED

    def test_concurrent_callers_share_one_load(self):
        loader = CountingLoader(delay=0.05)
        lifecycle = ModelLifecycle(loader=loader)

        async def run():
            return await asyncio.gather(lifecycle.ensure_loaded(), lifecycle.ensure_loaded(),
                                        lifecycle.ensure_loaded())

        results = asyncio.run(run())
        assert loader.calls == 1
        assert lifecycle.load_attempts == 1
        assert all(r is loader.model for r in results)

    def test_state_is_loading_while_in_flight(self):
        seen = []
        lifecycle = None

        def loader():
            seen.append(lifecycle.state)
            return 'model'

        lifecycle = ModelLifecycle(loader=loader)
        asyncio.run(lifecycle.ensure_loaded())
        assert seen == [ModelState.LOADING]
        assert lifecycle.state is ModelState.LOADED


class TestFailureAndRetry:
    def test_failure_reaches_all_waiters(self):
        loader = CountingLoader(failures=1, delay=0.02)
        lifecycle = ModelLifecycle(loader=loader)

        async def run():
            return await asyncio.gather(lifecycle.ensure_loaded(), lifecycle.ensure_loaded(),
                                        return_exceptions=True)

        results = asyncio.run(run())
        assert loader.calls == 1
        assert all(isinstance(r, ModelLoadFailure) for r in results)
        assert lifecycle.state is ModelState.FAILED
        assert 'download failed' in str(lifecycle.last_error)

    def test_next_call_retries_after_failure(self):
        loader = CountingLoader(failures=1)
        lifecycle = ModelLifecycle(loader=loader)

        async def run():
            with pytest.raises(ModelLoadFailure):
                await lifecycle.ensure_loaded()
            assert lifecycle.state is ModelState.FAILED
            return await lifecycle.ensure_loaded()

        model = asyncio.run(run())
        assert model is loader.model
        assert loader.calls == 2
        assert lifecycle.load_attempts == 2
        assert lifecycle.state is ModelState.LOADED
        assert lifecycle.last_error is None

    def test_model_load_failure_from_loader_kept(self):
        def loader():
            raise ModelLoadFailure("InsightFace not installed")

        lifecycle = ModelLifecycle(loader=loader)
        with pytest.raises(ModelLoadFailure, match='not installed'):
            asyncio.run(lifecycle.ensure_loaded())

    def test_cooldown_blocks_plain_retries(self):
        clock = FakeClock()
        loader = CountingLoader(failures=1)
        lifecycle = ModelLifecycle(loader=loader, retry_cooldown=60.0, clock=clock)

        async def run():
            with pytest.raises(ModelLoadFailure):
                await lifecycle.ensure_loaded()
            clock.now += 10
            with pytest.raises(ModelLoadFailure, match='cached failure'):
                await lifecycle.ensure_loaded()
            assert loader.calls == 1
            clock.now += 60
            return await lifecycle.ensure_loaded()

        assert asyncio.run(run()) is loader.model
        assert loader.calls == 2

    def test_explicit_retry_bypasses_cooldown(self):
        clock = FakeClock()
        loader = CountingLoader(failures=1)
        lifecycle = ModelLifecycle(loader=loader, retry_cooldown=60.0, clock=clock)

        async def run():
            with pytest.raises(ModelLoadFailure):
                await lifecycle.ensure_loaded()
            return await lifecycle.retry()

        assert asyncio.run(run()) is loader.model
        assert lifecycle.state is ModelState.LOADED


class TestWarmup:
    def test_warmup_runs_once_with_model(self):
        warmed = []
        lifecycle = ModelLifecycle(loader=lambda: 'model', warmup=warmed.append)

        async def run():
            await lifecycle.ensure_loaded()
            await lifecycle.ensure_loaded()

        asyncio.run(run())
        assert warmed == ['model']

    def test_warmup_failure_is_not_fatal(self):
        def bad_warmup(model):
            raise RuntimeError("kernel compile failed")

        lifecycle = ModelLifecycle(loader=lambda: 'model', warmup=bad_warmup)
        assert asyncio.run(lifecycle.ensure_loaded()) == 'model'
        assert lifecycle.state is ModelState.LOADED


class TestPreload:
    def test_preload_success(self):
        lifecycle = ModelLifecycle(loader=lambda: 'model')
        assert asyncio.run(lifecycle.preload()) is True

    def test_preload_failure_does_not_raise(self):
        lifecycle = ModelLifecycle(loader=CountingLoader(failures=5))
        assert asyncio.run(lifecycle.preload()) is False
        assert lifecycle.state is ModelState.FAILED

    def test_stats(self):
        lifecycle = ModelLifecycle(loader=CountingLoader(failures=1))
        asyncio.run(lifecycle.preload())
        stats = lifecycle.get_stats()
        assert stats['state'] == 'failed'
        assert stats['load_attempts'] == 1
        assert 'download failed' in stats['last_error']
