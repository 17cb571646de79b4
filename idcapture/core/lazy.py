"""
Load-once resources (vision engine module, face model).

State goes uninitialized -> loading -> ready | failed. Concurrent callers of
ensure() await the same in-flight load; a ready value is never reloaded and a
failure is remembered so it is not retried on every tick.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

UNINITIALIZED = "uninitialized"
LOADING = "loading"
READY = "ready"
FAILED = "failed"


class LazyResource:
    def __init__(self, name: str, loader: Callable[[], Any]):
        self.name = name
        self._loader = loader
        self.state = UNINITIALIZED
        self.value: Any = None
        self.error: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def ready(self) -> bool:
        return self.state == READY

    async def ensure(self) -> Any:
        if self.state == READY:
            return self.value
        if self.state == FAILED:
            # fresh traceback: the cached error must not keep earlier callers' frames alive
            raise self.error.with_traceback(None)
        loop = asyncio.get_running_loop()
        if self._task is None or self._task.get_loop() is not loop:
            # a load started on a loop that has since gone away never finishes
            self.state = LOADING
            self._task = loop.create_task(self._load(loop))
        return await asyncio.shield(self._task)

    async def _load(self, loop: asyncio.AbstractEventLoop) -> Any:
        logger.debug("[lazy] loading %s", self.name)
        try:
            value = await loop.run_in_executor(None, self._loader)
        except Exception as e:
            self.state = FAILED
            self.error = e
            logger.warning("[lazy] %s failed to load: %s", self.name, e)
            raise
        self.value = value
        self.state = READY
        logger.info("[lazy] %s ready", self.name)
        return value

    def reset(self) -> None:
        self.state = UNINITIALIZED
        self.value = None
        self.error = None
        self._task = None
