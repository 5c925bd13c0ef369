"""Chat lifecycle and message storage.

Active-chat uniqueness uses an insert-first, reconcile-after protocol: a
caller that finds no active chat inserts its own, then reads all active
chats for the patient through the ``(patient_id, status)`` index and deletes
everything but the earliest ``(created_at, chat_id)``. Chat ids are
ObjectIds, so within a millisecond the id order is the insertion order.
Concurrent reconcilers sort the same rows the same way, so they agree on the
survivor. When the partial unique index is present the server rejects the
duplicate insert instead and the same read returns the existing chat.
"""

from pulse.models.chat import Chat, Message
from pulse.models.triage import ChatStatus, MessageRole
from pulse.config.database import get_chats_collection, get_messages_collection
from pulse.config.settings import settings
from pulse.errors import ChatReconciliationError, InvalidTransitionError, NotFoundError
from pulse.utils.time_utils import utc_now
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
from typing import List, Optional
import logging

logger = logging.getLogger(__name__)


def _survivor_key(doc: dict):
    return (doc["created_at"], doc["chat_id"])


class ChatService:
    """Service for managing patient chats and their messages."""

    async def create_chat(self, patient_id: str) -> Chat:
        """Insert a new active chat without any uniqueness handling."""
        chat = Chat(patient_id=patient_id, status=ChatStatus.ACTIVE)

        collection = await get_chats_collection()
        await collection.insert_one(chat.model_dump(by_alias=True))

        logger.info(f"Created chat {chat.chat_id} for patient {patient_id}")
        return chat

    async def get_or_create_active_chat(self, patient_id: str) -> str:
        """
        Return the patient's single active chat, creating it if needed.

        Args:
            patient_id: Patient identifier

        Returns:
            Chat ID of the surviving active chat

        Raises:
            ChatReconciliationError: If no active chat stays visible after
                ``chat_reconcile_max_attempts`` inserts
        """
        # An existing active chat is never raced by our own insert.
        existing_id = await self.reconcile_active_chats(patient_id)
        if existing_id is not None:
            return existing_id

        for attempt in range(1, settings.chat_reconcile_max_attempts + 1):
            try:
                await self.create_chat(patient_id)
            except DuplicateKeyError:
                logger.info(
                    f"Active chat already exists for patient {patient_id}; reusing it"
                )

            survivor_id = await self.reconcile_active_chats(patient_id)
            if survivor_id is not None:
                return survivor_id

            # Our row and any rival were transitioned out of active before the read.
            logger.warning(
                f"No active chat visible for patient {patient_id} "
                f"after insert (attempt {attempt})"
            )

        raise ChatReconciliationError(
            f"Could not establish an active chat for patient {patient_id}"
        )

    async def reconcile_active_chats(self, patient_id: str) -> Optional[str]:
        """
        Collapse duplicate active chats for a patient to the earliest one.

        Args:
            patient_id: Patient identifier

        Returns:
            Surviving chat ID, or None if the patient has no active chat
        """
        collection = await get_chats_collection()
        cursor = collection.find(
            {"patient_id": patient_id, "status": ChatStatus.ACTIVE}
        )
        active = [doc async for doc in cursor]

        if not active:
            return None

        active.sort(key=_survivor_key)
        survivor = active[0]
        duplicates = [doc["chat_id"] for doc in active[1:]]

        if duplicates:
            logger.warning(
                f"Reconciling {len(duplicates)} duplicate active chat(s) for "
                f"patient {patient_id}; keeping {survivor['chat_id']}"
            )
            try:
                await collection.delete_many(
                    {"chat_id": {"$in": duplicates}, "status": ChatStatus.ACTIVE}
                )
            except PyMongoError as e:
                # The next reconciler repeats the same deletion.
                logger.warning(
                    f"Failed to delete duplicate chats {duplicates} for patient "
                    f"{patient_id}: {e}"
                )

        return survivor["chat_id"]

    async def get_chat(self, chat_id: str) -> Optional[Chat]:
        """
        Get a chat by ID.

        Args:
            chat_id: Chat identifier

        Returns:
            Chat or None if not found
        """
        collection = await get_chats_collection()
        doc = await collection.find_one({"chat_id": chat_id})

        if doc:
            return Chat(**doc)
        return None

    async def require_chat(self, chat_id: str) -> Chat:
        chat = await self.get_chat(chat_id)
        if chat is None:
            raise NotFoundError("chat", chat_id)
        return chat

    async def list_patient_chats(self, patient_id: str) -> List[Chat]:
        """All chats for a patient, newest first."""
        collection = await get_chats_collection()
        cursor = collection.find({"patient_id": patient_id}).sort(
            [("created_at", DESCENDING), ("chat_id", DESCENDING)]
        )
        return [Chat(**doc) async for doc in cursor]

    async def list_escalated_for_physician(self, physician_id: str) -> List[Chat]:
        """Chats currently escalated to a physician."""
        collection = await get_chats_collection()
        cursor = collection.find(
            {"escalated_to": physician_id, "status": ChatStatus.ESCALATED}
        ).sort("escalated_at", DESCENDING)
        return [Chat(**doc) async for doc in cursor]

    async def get_messages(self, chat_id: str) -> List[Message]:
        """
        Get a chat's messages in order.

        Ordered by timestamp, then by insertion order (``_id``) for messages
        written in the same millisecond.
        """
        collection = await get_messages_collection()
        cursor = collection.find({"chat_id": chat_id}).sort(
            [("timestamp", ASCENDING), ("_id", ASCENDING)]
        )
        return [Message(**doc) async for doc in cursor]

    async def add_message(
        self,
        chat_id: str,
        role: MessageRole,
        content: str,
        metadata: Optional[dict] = None,
    ) -> Message:
        """
        Append a message to a chat.

        Args:
            chat_id: Chat identifier
            role: Message author
            content: Message content
            metadata: Optional structured metadata

        Returns:
            The stored Message
        """
        message = Message(
            chat_id=chat_id, role=role, content=content, metadata=metadata or {}
        )

        collection = await get_messages_collection()
        await collection.insert_one(message.model_dump(by_alias=True))
        return message

    async def add_message_pair(
        self,
        chat_id: str,
        user_content: str,
        reply_role: MessageRole,
        reply_content: str,
        reply_metadata: Optional[dict] = None,
    ) -> List[Message]:
        """
        Append a user turn and its reply, user first.

        Both documents share a timestamp and go through one ordered bulk
        insert, so the reply never precedes (or exists without) its user turn.
        """
        now = utc_now()
        pair = [
            Message(
                chat_id=chat_id,
                role=MessageRole.USER,
                content=user_content,
                timestamp=now,
            ),
            Message(
                chat_id=chat_id,
                role=reply_role,
                content=reply_content,
                timestamp=now,
                metadata=reply_metadata or {},
            ),
        ]

        collection = await get_messages_collection()
        await collection.insert_many(
            [m.model_dump(by_alias=True) for m in pair], ordered=True
        )
        return pair

    async def escalate_chat(self, chat_id: str, physician_id: str) -> None:
        """
        Move a chat from active to escalated.

        An already-escalated chat keeps its first escalation target.

        Raises:
            NotFoundError: If the chat does not exist
            InvalidTransitionError: If the chat is resolved
        """
        collection = await get_chats_collection()
        now = utc_now()
        result = await collection.update_one(
            {"chat_id": chat_id, "status": ChatStatus.ACTIVE},
            {
                "$set": {
                    "status": ChatStatus.ESCALATED,
                    "escalated_at": now,
                    "escalated_to": physician_id,
                }
            },
        )

        if result.modified_count > 0:
            logger.info(f"Escalated chat {chat_id} to {physician_id}")
            return

        chat = await self.require_chat(chat_id)
        if chat.status == ChatStatus.ESCALATED:
            logger.info(f"Chat {chat_id} already escalated to {chat.escalated_to}")
            return
        raise InvalidTransitionError(
            f"Chat {chat_id} is {chat.status.value} and cannot be escalated"
        )

    async def close_chat(self, chat_id: str) -> bool:
        """
        Resolve a chat if it is still open.

        Returns:
            True if this call resolved it, False if it was already resolved
            or does not exist
        """
        collection = await get_chats_collection()
        result = await collection.update_one(
            {
                "chat_id": chat_id,
                "status": {"$in": [ChatStatus.ACTIVE, ChatStatus.ESCALATED]},
            },
            {"$set": {"status": ChatStatus.RESOLVED, "resolved_at": utc_now()}},
        )

        if result.modified_count > 0:
            logger.info(f"Resolved chat {chat_id}")
            return True
        return False

    async def resolve_chat(self, chat_id: str) -> None:
        """
        Mark a chat resolved. Resolved is terminal.

        Raises:
            NotFoundError: If the chat does not exist
            InvalidTransitionError: If the chat is already resolved
        """
        if await self.close_chat(chat_id):
            return

        await self.require_chat(chat_id)
        raise InvalidTransitionError(f"Chat {chat_id} is already resolved")


# Global service instance
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Get or create ChatService instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service
