"""Audit trail storage and queries."""

from pulse.models.audit import AuditEntry
from pulse.config.database import get_audit_log_collection
from pulse.config.settings import settings
from pulse.utils.time_utils import to_naive_utc
from pymongo import DESCENDING
from datetime import datetime
from typing import List, Optional
import json
import logging

logger = logging.getLogger(__name__)


class AuditService:
    """Persists sanitized audit entries and serves admin queries."""

    async def record(self, entry: AuditEntry) -> None:
        """
        Persist one audit entry.

        Args:
            entry: Entry whose metadata has already been sanitized
        """
        collection = await get_audit_log_collection()
        await collection.insert_one(entry.model_dump(by_alias=True))

        if settings.audit_echo_logs and settings.environment == "development":
            logger.info("[AUDIT] %s", json.dumps(entry.model_dump(mode="json")))

    async def _query(self, query: dict, limit: int) -> List[AuditEntry]:
        collection = await get_audit_log_collection()
        cursor = collection.find(query).sort("timestamp", DESCENDING).limit(limit)
        return [AuditEntry(**doc) async for doc in cursor]

    async def get_by_user(self, user_id: str, limit: int = 100) -> List[AuditEntry]:
        return await self._query({"user_id": user_id}, limit)

    async def get_by_resource(
        self, resource_type: str, resource_id: str, limit: int = 100
    ) -> List[AuditEntry]:
        return await self._query(
            {"resource_type": resource_type, "resource_id": resource_id}, limit
        )

    async def get_by_action(self, action: str, limit: int = 100) -> List[AuditEntry]:
        return await self._query({"action": action}, limit)

    async def get_by_time_range(
        self, start: datetime, end: datetime, limit: int = 1000
    ) -> List[AuditEntry]:
        """Entries with start <= timestamp <= end, newest first."""
        window = {"$gte": to_naive_utc(start), "$lte": to_naive_utc(end)}
        return await self._query({"timestamp": window}, limit)

    async def get_recent(self, limit: int = 100) -> List[AuditEntry]:
        return await self._query({}, limit)


# Global service instance
_audit_service: Optional[AuditService] = None


def get_audit_service() -> AuditService:
    """Get or create AuditService instance."""
    global _audit_service
    if _audit_service is None:
        _audit_service = AuditService()
    return _audit_service
