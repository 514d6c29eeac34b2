import asyncio
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional
from loguru import logger

from app.core.errors import FinalizationError, OverwriteRejectedError
from app.models.upload import CompletionEvent

FinalizeCallback = Callable[[CompletionEvent], Awaitable[bool]]


class CompletionConsumer:
    """
    Drains completion notifications of one upload store and finalizes them
    one at a time, in the order the store emitted them.

    A failure while finalizing one session is logged and counted; the loop
    keeps listening for the next notification.
    """

    def __init__(self, name: str, events: "asyncio.Queue[CompletionEvent]", finalize: FinalizeCallback):
        self.name = name
        self.events = events
        self.finalize = finalize
        self.task: Optional[asyncio.Task] = None
        self.processing = False
        self.started_at: Optional[datetime] = None
        self.stats = {
            'total_received': 0,
            'total_finalized': 0,
            'total_skipped': 0,
            'total_rejected': 0,
            'total_failed': 0,
        }

    @property
    def running(self) -> bool:
        return self.task is not None and not self.task.done()

    @property
    def idle(self) -> bool:
        """Nothing queued and nothing being finalized"""
        return not self.processing and self.events.empty()

    def start(self) -> asyncio.Task:
        """Spawn the consumer task if it is not running yet"""
        if not self.running:
            self.started_at = datetime.now()
            self.task = asyncio.create_task(self._run(), name=f"completion-consumer-{self.name}")
        return self.task

    async def _run(self):
        logger.info(f"Completion consumer {self.name} started")

        while True:
            event = await self.events.get()
            self.processing = True
            try:
                await self.process(event)
            finally:
                self.processing = False
                self.events.task_done()

    async def process(self, event: CompletionEvent):
        """Finalize a single completion notification without letting errors escape"""
        self.stats['total_received'] += 1
        try:
            if await self.finalize(event):
                self.stats['total_finalized'] += 1
                logger.info(f"Consumer {self.name} finalized upload {event.id}")
            else:
                self.stats['total_skipped'] += 1
                logger.debug(f"Consumer {self.name} skipped non-final upload {event.id}")

        except OverwriteRejectedError as e:
            self.stats['total_rejected'] += 1
            logger.warning(f"Upload {event.id} rejected: {e}")

        except FinalizationError as e:
            self.stats['total_failed'] += 1
            logger.error(f"ERROR: couldn't handle completed upload {event.id}: {e}")

        except Exception as e:
            self.stats['total_failed'] += 1
            logger.exception(f"Unexpected error while finalizing upload {event.id}: {e}")

    async def stop(self, drain: bool = True):
        """Finish pending notifications (optionally), then cancel and await the task"""
        if self.task is None:
            return

        if drain and self.running:
            await self.events.join()

        self.task.cancel()
        try:
            await self.task
        except asyncio.CancelledError:
            pass
        logger.info(f"Completion consumer {self.name} stopped")

    def get_status(self) -> Dict:
        return {
            'name': self.name,
            'running': self.running,
            'pending': self.events.qsize(),
            'started_at': self.started_at.isoformat() if self.started_at else None,
            **self.stats,
        }
