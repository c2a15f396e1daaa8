"""RuntimeContext — explicit owner of the workspace's sandbox runtime.

Passed by reference to every component that needs the runtime; there is no
module-level runtime instance.
"""

from __future__ import annotations

import asyncio
import logging

from sandbox.base import SandboxRuntime

logger = logging.getLogger(__name__)


class RuntimeContext:
    def __init__(self, runtime: SandboxRuntime | None = None):
        self.runtime = runtime
        self.error: Exception | None = None
        self._ready = False
        self._boot_lock = asyncio.Lock()

    @property
    def ready(self) -> bool:
        return self.runtime is not None and self._ready

    async def boot(self) -> bool:
        """Boot the runtime once. A failed boot leaves the context not-ready, it does not raise."""
        if self.runtime is None:
            return False
        async with self._boot_lock:
            if self._ready:
                return True
            try:
                await self.runtime.boot()
            except Exception as exc:
                self.error = exc
                logger.warning("Sandbox runtime '%s' failed to boot: %s", self.runtime.name, exc)
                return False
            self._ready = True
            self.error = None
            logger.info("Sandbox runtime '%s' ready", self.runtime.name)
            return True

    async def close(self) -> None:
        if self.runtime is None:
            return
        was_ready, self._ready = self._ready, False
        if was_ready:
            await self.runtime.close()
