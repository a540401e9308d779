"""
Message service - private messages between users

Messages live only in PostgreSQL. Only the two participants can read a
thread; there is no admin override.
"""
import logging

from datec.errors import ForbiddenError, InvalidInputError, NotFoundError
from datec.models.api.identity import Identity
from datec.models.domain.message import Message, MessageThread
from datec.models.domain.user import User
from datec.utils.datetime_utils import utc_now
from datec.utils.id_generator import generate_message_id

logger = logging.getLogger(__name__)


class MessageService:

    def __init__(self, metadata, max_length: int = 5000):
        self.metadata = metadata
        self.max_length = max_length

    async def _get_user(self, username: str, missing: str) -> User:
        user = await self.metadata.users.get_by_username(username)
        if user is None:
            raise NotFoundError(missing)
        return user

    async def send(self, sender: Identity, from_username: str, to_username: str,
                   content: str) -> Message:
        """
        Send `content` from `from_username` to `to_username`.

        Raises:
            InvalidInputError: empty or over-long content, or a message to self
            ForbiddenError: `sender` is not `from_username`
            NotFoundError: recipient does not exist
        """
        content = content or ""
        if not content.strip() or len(content) > self.max_length:
            raise InvalidInputError(f"Message content must be between 1 and {self.max_length} characters")
        if sender.username != from_username:
            raise ForbiddenError("Cannot send messages as another user")

        recipient = await self._get_user(to_username, "Recipient user not found")
        if recipient.user_id == sender.user_id:
            raise InvalidInputError("Cannot send messages to yourself")

        now = utc_now()
        message = await self.metadata.messages.create(Message(
            message_id=generate_message_id(now),
            from_user_id=sender.user_id,
            from_username=sender.username,
            to_user_id=recipient.user_id,
            content=content.strip(),
            created_at=now,
        ))
        logger.info(f"Message {message.message_id} sent from {sender.username} to {recipient.username}")
        return message

    async def thread(self, requester: Identity, username_a: str, username_b: str) -> MessageThread:
        """Conversation between two users, oldest first; participants only"""
        if requester.username not in (username_a, username_b):
            raise ForbiddenError("You can only view conversations you are part of")

        user_a = await self._get_user(username_a, "User not found")
        user_b = await self._get_user(username_b, "User not found")

        messages = await self.metadata.messages.list_thread(user_a.user_id, user_b.user_id)
        return MessageThread(
            participant_1=user_a.username,
            participant_2=user_b.username,
            viewer_user_id=requester.user_id,
            messages=messages,
        )
