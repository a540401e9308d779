"""
Notification fan-out over bounded Redis lists

Queue key: notifications:user:{user_id}
Newest first, trimmed to the most recent `max_queue` entries. There is no
durable copy anywhere else; eviction and store failures lose notifications.
"""
import logging
from typing import Any, Iterable, List

from datec.errors import DatecError
from datec.models.api.notification import Notification, parse_notification
from .ephemeral_store import EphemeralStore

logger = logging.getLogger(__name__)


def queue_key(user_id: str) -> str:
    return f"notifications:user:{user_id}"


class NotificationFanout:
    """Send, broadcast and read per-user notification queues"""

    def __init__(self, store: EphemeralStore, max_queue: int = 50):
        self.store = store
        self.max_queue = max_queue

    async def send(self, recipient_id: str, notification: Any) -> None:
        """
        Push one notification to the front of the recipient's queue.

        Raises:
            InvalidInputError: unknown notification kind
            UpstreamStoreError: Redis write failed
        """
        notification = parse_notification(notification)
        await self.store.push_bounded(
            queue_key(recipient_id),
            notification.model_dump_json(),
            self.max_queue,
        )
        logger.debug(f"Notified {recipient_id}: {notification.type}")

    async def broadcast(self, recipient_ids: Iterable[str], notification: Any) -> int:
        """
        Send to each recipient independently.

        Returns:
            Number of recipients that received the notification
        """
        notification = parse_notification(notification)
        delivered = 0
        for recipient_id in recipient_ids:
            try:
                await self.send(recipient_id, notification)
                delivered += 1
            except DatecError as e:
                logger.warning(f"⚠️ Notification {notification.type} to {recipient_id} failed: {e}")
        return delivered

    async def list(self, user_id: str, limit: int = 50) -> List[Notification]:
        """Most recent notifications first; undecodable entries are skipped"""
        raw = await self.store.list_range(queue_key(user_id), 0, max(limit, 1) - 1)
        notifications = []
        for entry in raw:
            try:
                notifications.append(parse_notification(entry))
            except DatecError as e:
                logger.warning(f"Skipping malformed notification for {user_id}: {e}")
        return notifications

    async def count(self, user_id: str) -> int:
        return await self.store.list_length(queue_key(user_id))

    async def clear(self, user_id: str) -> bool:
        return bool(await self.store.delete(queue_key(user_id)))
