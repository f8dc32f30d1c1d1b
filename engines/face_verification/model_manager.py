"""
Model Lifecycle Manager: owns load / warm-up state of the inference model.

State machine:
    UNLOADED → LOADING → LOADED            (terminal, model reused)
                       → FAILED → LOADING  (retry on a later call)

Concurrent ensure_loaded() callers are coalesced onto the single in-flight
load task; no lock is needed because state changes happen between await
points on one event loop.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Optional

from engines.face_verification.errors import ModelLoadFailure

logger = logging.getLogger(__name__)


class ModelState(Enum):
    UNLOADED = 'unloaded'
    LOADING = 'loading'
    LOADED = 'loaded'
    FAILED = 'failed'


class ModelLifecycle:
    """
    Loads a model at most once at a time and caches the result.

    Args:
        loader: blocking callable returning the loaded model; run in a worker thread
        warmup: optional blocking callable taking the model; failures are logged only
        retry_cooldown: seconds after a failure during which ensure_loaded()
            re-raises the cached failure instead of loading again
        clock: monotonic time source
    """

    def __init__(self, loader: Callable[[], Any],
                 warmup: Optional[Callable[[Any], None]] = None,
                 retry_cooldown: float = 0.0,
                 clock: Callable[[], float] = time.monotonic):
        self._loader = loader
        self._warmup = warmup
        self.retry_cooldown = retry_cooldown
        self._clock = clock

        self.state = ModelState.UNLOADED
        self.load_attempts = 0
        self._model: Any = None
        self._pending: Optional[asyncio.Task] = None
        self._last_error: Optional[ModelLoadFailure] = None
        self._failed_at: Optional[float] = None

    @property
    def model(self) -> Any:
        return self._model

    @property
    def loaded(self) -> bool:
        return self.state is ModelState.LOADED

    @property
    def last_error(self) -> Optional[ModelLoadFailure]:
        return self._last_error

    def _cooling_down(self) -> bool:
        if self._failed_at is None or self.retry_cooldown <= 0:
            return False
        return self._clock() - self._failed_at < self.retry_cooldown

    async def ensure_loaded(self) -> Any:
        """
        Return the loaded model, loading it if necessary.

        Raises:
            ModelLoadFailure: the load (or the cached recent load) failed
        """
        if self.state is ModelState.LOADED:
            return self._model

        if self._pending is None:
            if self.state is ModelState.FAILED and self._cooling_down():
                raise ModelLoadFailure(f"Model unavailable (cached failure): {self._last_error}")
            self._pending = asyncio.ensure_future(self._load())

        return await asyncio.shield(self._pending)

    async def retry(self) -> Any:
        """Explicit retry: clears the cached failure and loads immediately."""
        self._failed_at = None
        return await self.ensure_loaded()

    async def preload(self) -> bool:
        """Load at process start. Never raises; returns False on failure."""
        try:
            await self.ensure_loaded()
            return True
        except ModelLoadFailure as e:
            logger.error(f"Model preload failed, matching will fail closed: {e}")
            return False

    async def _load(self) -> Any:
        self.state = ModelState.LOADING
        self.load_attempts += 1
        logger.info(f"Loading model (attempt {self.load_attempts})")

        try:
            try:
                model = await asyncio.to_thread(self._loader)
            except ModelLoadFailure as e:
                self._fail(e)
                raise
            except Exception as e:
                failure = ModelLoadFailure(f"Model load failed: {e}")
                self._fail(failure)
                raise failure from e

            if self._warmup is not None:
                try:
                    await asyncio.to_thread(self._warmup, model)
                    logger.info("Model warm-up complete")
                except Exception as e:
                    logger.warning(f"Model warm-up failed, continuing: {e}")

            self._model = model
            self._last_error = None
            self._failed_at = None
            self.state = ModelState.LOADED
            logger.info("Model loaded")
            return model
        finally:
            self._pending = None

    def _fail(self, error: ModelLoadFailure) -> None:
        self.state = ModelState.FAILED
        self._last_error = error
        self._failed_at = self._clock()
        logger.error(f"Model load failed: {error}")

    def get_stats(self) -> dict:
        return {
            'state': self.state.value,
            'load_attempts': self.load_attempts,
            'last_error': str(self._last_error) if self._last_error else None,
            'retry_cooldown': self.retry_cooldown,
        }
