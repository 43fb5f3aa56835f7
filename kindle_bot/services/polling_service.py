import asyncio
from typing import Optional

from pydantic import ValidationError

from kindle_bot.logging_config import get_logger
from kindle_bot.schemas.telegram import TelegramUpdate

logger = get_logger("polling_worker")


def parse_update(raw: dict) -> Optional[TelegramUpdate]:
    try:
        return TelegramUpdate(**raw)
    except (TypeError, ValidationError) as e:
        logger.warning(f"Skipping malformed update: {e}", extra={"context": {"update_id": raw.get("update_id")}})
        return None


class PollingWorker:
    """Long-poll getUpdates and handle every update in its own task."""

    def __init__(self, telegram, handler, timeout: int = 60, retry_delay: float = 5.0):
        self.telegram = telegram
        self.handler = handler
        self.timeout = timeout
        self.retry_delay = retry_delay
        self.offset = 0
        self._task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    def dispatch(self, raw: dict) -> Optional[asyncio.Task]:
        update_id = raw.get("update_id")
        if isinstance(update_id, int):
            self.offset = max(self.offset, update_id + 1)

        update = parse_update(raw)
        if update is None:
            return None

        # Updates from different users run concurrently; nothing serializes one user's updates.
        task = asyncio.create_task(self.handler.handle_update(update))
        self._inflight.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Error handling update: {exc}", exc_info=exc)

    async def poll_once(self) -> int:
        updates = await asyncio.to_thread(self.telegram.get_updates, self.offset, self.timeout)
        for raw in updates:
            self.dispatch(raw)
        return len(updates)

    async def run(self) -> None:
        logger.info("Polling started")
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error(
                    "Polling loop failed",
                    extra={"context": {"error": str(exc), "offset": self.offset}},
                )
                await asyncio.sleep(self.retry_delay)
        logger.info("Polling stopped")

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
