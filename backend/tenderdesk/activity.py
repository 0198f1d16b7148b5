"""Company activity log with duplicate suppression and bounded retention."""

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from tenderdesk.config import ActivityConfig
from tenderdesk.storage.base import Document, DocumentStore

logger = logging.getLogger(__name__)

ACTIVITY_COLLECTION = "activitylogs"
USER_LOGIN = "user_login"


class ActivityLogService:
    def __init__(
        self,
        store: DocumentStore,
        company_id: str,
        config: ActivityConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.company_id = company_id
        self.config = config or ActivityConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last_content: str | None = None
        self._last_logged_at: datetime | None = None

    def _is_repeat(self, content: str, now: datetime) -> bool:
        if self._last_content != content or self._last_logged_at is None:
            return False
        return (now - self._last_logged_at).total_seconds() < self.config.duplicate_window_seconds

    async def log_activity(
        self,
        activity_type: str,
        description: str,
        details: dict[str, Any] | None = None,
        user_id: str | None = None,
        user_name: str | None = None,
    ) -> str | None:
        """Record an activity. Returns the new id, or None if suppressed as a repeat."""
        now = self._clock()
        content = f"{activity_type}:{description}"
        if self._is_repeat(content, now):
            logger.debug(f"Suppressed repeated activity {content}")
            return None

        self._last_content = content
        self._last_logged_at = now

        activity_id = await self.store.add(
            ACTIVITY_COLLECTION,
            {
                "type": activity_type,
                "description": description,
                "details": details or {},
                "user_id": user_id,
                "user_name": user_name,
                "company_id": self.company_id,
                "created_at": now,
            },
        )
        await self.cleanup_old_activities()
        return activity_id

    async def log_user_login(self, user_id: str, user_name: str = "") -> str | None:
        return await self.log_activity(
            USER_LOGIN,
            f"تسجيل دخول المستخدم {user_name or user_id}",
            {"login_at": self._clock().isoformat()},
            user_id=user_id,
            user_name=user_name,
        )

    async def get_recent_activities(self, limit: int | None = None) -> list[Document]:
        return await self.store.query(
            ACTIVITY_COLLECTION,
            {"company_id": self.company_id},
            order_by="created_at",
            descending=True,
            limit=limit or self.config.max_activities,
        )

    async def get_login_user_ids(self, since: datetime) -> set[str]:
        logs = await self.store.query(
            ACTIVITY_COLLECTION,
            {"type": USER_LOGIN, "company_id": self.company_id, "created_at": {"$gte": since}},
        )
        return {str(log["user_id"]) for log in logs if log.get("user_id")}

    async def cleanup_old_activities(self) -> int:
        """Delete all but the newest `max_activities` entries for the company."""
        docs = await self.store.query(
            ACTIVITY_COLLECTION,
            {"company_id": self.company_id},
            order_by="created_at",
            descending=True,
        )
        stale = docs[self.config.max_activities:]
        for doc in stale:
            try:
                await self.store.delete(ACTIVITY_COLLECTION, doc["id"])
            except Exception as e:
                logger.error(f"Failed to delete old activity {doc['id']}: {e}")
        if stale:
            logger.info(f"Cleaned up {len(stale)} old activities")
        return len(stale)
