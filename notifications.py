"""
Admin notifications: persisted documents plus a live push to connected admins.

The NotificationHub is created once per application (see main.py) and handed
to handlers through `get_hub`, so tests can register fake connections on it.
"""
import asyncio
import logging
from typing import Any, Dict, Optional, Set

from fastapi import Request

from database import to_serializable, utcnow
from schemas import Notification, NotificationType

logger = logging.getLogger(__name__)


class NotificationHub:
    """Registry of live admin connections.

    A connection is anything exposing an async ``send_json``. All methods run
    on the event loop, so the registry needs no locking.
    """

    def __init__(self):
        self._connections: Set[Any] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def register(self, connection) -> None:
        self._connections.add(connection)
        logger.info("Admin client connected (%d open)", len(self._connections))

    def unregister(self, connection) -> None:
        if connection in self._connections:
            self._connections.discard(connection)
            logger.info("Admin client disconnected (%d open)", len(self._connections))

    async def broadcast(self, event: Dict[str, Any]) -> int:
        connections = list(self._connections)
        # pushes go out together so one slow socket does not hold up the rest
        results = await asyncio.gather(
            *(connection.send_json(event) for connection in connections),
            return_exceptions=True,
        )
        delivered = 0
        for connection, result in zip(connections, results):
            if isinstance(result, Exception):
                logger.warning("Dropping admin connection after failed push: %s", result)
                self.unregister(connection)
            else:
                delivered += 1
        return delivered


def get_hub(request: Request) -> NotificationHub:
    return request.app.state.hub


async def notify(db, hub: Optional[NotificationHub], type: NotificationType, message: str,
                 data: Optional[Dict[str, Any]] = None) -> dict:
    """Persist a notification and push it to every connected admin."""
    doc = Notification(type=type, message=message, data=data or {}).model_dump()
    doc["created_at"] = utcnow()
    doc["_id"] = db["notification"].insert_one(doc).inserted_id

    if hub is not None:
        event = {
            "event": "notification",
            "data": {
                "id": str(doc["_id"]),
                "type": doc["type"],
                "message": message,
                "timestamp": doc["created_at"].isoformat(),
                "data": to_serializable(doc["data"]),
            },
        }
        try:
            await hub.broadcast(event)
        except Exception:
            logger.exception("Push of %s notification failed", doc["type"])
    return doc
