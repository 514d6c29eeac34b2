import asyncio
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Union
from loguru import logger

from app.core.config import Settings, settings as default_settings
from app.services.upload_handler import UploadHandler, create_upload_handler

UserId = Union[int, str]
HandlerFactory = Callable[[UserId, str, Settings], UploadHandler]


class HandlerRegistry:
    """
    Lazily creates one UploadHandler per user and caches it.

    The lock only guards the lookup-or-create step so requests of different
    users are never serialized behind each other's uploads.

    Every get_or_create() takes a lease on the user's handler that lasts until
    release(). With max_handlers > 0 the cache evicts least recently used
    handlers, but only ones without leases whose consumer has nothing left to
    finalize. Evicted handlers are closed in background tasks.
    """

    def __init__(self, settings: Optional[Settings] = None,
                 factory: HandlerFactory = create_upload_handler,
                 max_handlers: Optional[int] = None):
        self.settings = settings or default_settings
        self.factory = factory
        self.max_handlers = self.settings.max_upload_handlers if max_handlers is None else max_handlers
        self._handlers: "OrderedDict[UserId, UploadHandler]" = OrderedDict()
        self._leases: Dict[UserId, int] = {}
        self._closing: Dict[UserId, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, user_id: UserId) -> bool:
        return user_id in self._handlers

    async def get_or_create(self, user_id: UserId, user_root: Optional[str] = None) -> UploadHandler:
        """Return the user's handler, creating it on first use, and lease it to the caller"""
        while True:
            # An evicted handler of this user must be gone before its successor starts
            closing = self._closing.get(user_id)
            if closing is not None and not closing.done():
                await asyncio.wait([closing])

            async with self._lock:
                handler = self._handlers.get(user_id)
                if handler is None:
                    closing = self._closing.get(user_id)
                    if closing is not None and not closing.done():
                        continue
                    handler = self.factory(user_id, user_root or self.settings.user_root(user_id), self.settings)
                    self._handlers[user_id] = handler
                else:
                    self._handlers.move_to_end(user_id)
                self._leases[user_id] = self._leases.get(user_id, 0) + 1
                self._evict_idle()

            return handler

    async def release(self, user_id: UserId):
        """Drop a lease taken by get_or_create"""
        async with self._lock:
            leases = self._leases.get(user_id, 0) - 1
            if leases > 0:
                self._leases[user_id] = leases
            else:
                self._leases.pop(user_id, None)
            self._evict_idle()

    @asynccontextmanager
    async def acquire(self, user_id: UserId, user_root: Optional[str] = None) -> AsyncIterator[UploadHandler]:
        handler = await self.get_or_create(user_id, user_root)
        try:
            yield handler
        finally:
            await self.release(user_id)

    def _evict_idle(self):
        if not self.max_handlers:
            return

        for user_id in list(self._handlers):
            if len(self._handlers) <= self.max_handlers:
                break
            handler = self._handlers[user_id]
            if self._leases.get(user_id) or not handler.idle:
                continue

            del self._handlers[user_id]
            logger.info(f"Evicting tus handler for user {user_id}")
            task = asyncio.create_task(handler.close(), name=f"close-tus-handler-{user_id}")
            self._closing[user_id] = task
            task.add_done_callback(lambda t, user_id=user_id: self._forget_closing(user_id, t))

    def _forget_closing(self, user_id: UserId, task: asyncio.Task):
        if self._closing.get(user_id) is task:
            del self._closing[user_id]

    async def wait_closed(self):
        """Wait for every evicted handler to finish closing"""
        pending = list(self._closing.values())
        if pending:
            await asyncio.wait(pending)

    async def shutdown(self):
        """Close every handler, letting their consumers finish pending uploads"""
        async with self._lock:
            handlers = list(self._handlers.values())
            self._handlers.clear()
            self._leases.clear()

        if handlers:
            logger.info(f"Stopping {len(handlers)} tus handler(s)...")
        for handler in handlers:
            await handler.close()
        await self.wait_closed()

    def get_status(self) -> Dict:
        return {
            'active_handlers': len(self._handlers),
            'max_handlers': self.max_handlers,
            'closing_handlers': len(self._closing),
            'handlers': [
                {**handler.get_status(), 'leases': self._leases.get(user_id, 0)}
                for user_id, handler in self._handlers.items()
            ],
        }
