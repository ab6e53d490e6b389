from datetime import datetime

from app.core.database import SCHEDULER_SETTINGS_COLLECTION, get_collection, handle_db_errors


class NotificationSettingsStore:
    """Per-user default notification address for new schedules."""

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_collection(SCHEDULER_SETTINGS_COLLECTION)
        return self._collection

    @handle_db_errors("settings.get_default_email")
    async def get_default_email(self, user_id: str) -> str | None:
        doc = await self.collection.find_one({"user_id": user_id}, {"default_notification_email": 1})
        return doc.get("default_notification_email") if doc else None

    @handle_db_errors("settings.set_default_email")
    async def set_default_email(self, user_id: str, email: str | None, now: datetime) -> None:
        await self.collection.update_one(
            {"user_id": user_id},
            {
                "$set": {"default_notification_email": email, "updated_at": now},
                "$setOnInsert": {"user_id": user_id, "created_at": now},
            },
            upsert=True,
        )
