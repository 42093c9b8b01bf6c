"""Fire-and-forget cache revalidation for the public site."""

from __future__ import annotations

import asyncio
import logging

import httpx

log = logging.getLogger(__name__)


class RevalidationNotifier:
    """Tells the public site to rebuild a cached page after a write.

    ``emit`` schedules a detached task and returns immediately. The task has
    its own timeout and only ever logs failures.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}/api/revalidate"
        self.timeout = timeout
        self._transport = transport
        self._tasks: set[asyncio.Task] = set()

    def emit(self, path: str = "/") -> None:
        task = asyncio.get_running_loop().create_task(self._send(path))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, path: str) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await asyncio.wait_for(
                    client.post(self.url, json={"path": path}), self.timeout
                )
                resp.raise_for_status()
        except Exception as exc:
            log.warning(
                "Revalidation of %s failed (%s); page refreshes on its own schedule",
                path,
                exc,
            )
        else:
            log.debug("Revalidated %s", path)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every signal emitted so far."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()
