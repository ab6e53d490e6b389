from datetime import datetime

from pymongo import DESCENDING, ReturnDocument

from app.core.database import PAIRINGS_COLLECTION, get_collection, handle_db_errors


class PairingStore:
    """
    Access to ``extension_pairings``.

    Only hashes of the pairing code are stored. Expiry is always checked by
    the caller against ``expires_at``; the TTL index merely removes old
    sessions eventually.
    """

    def __init__(self, collection=None):
        self._collection = collection

    @property
    def collection(self):
        if self._collection is None:
            self._collection = get_collection(PAIRINGS_COLLECTION)
        return self._collection

    @handle_db_errors("pairing.create")
    async def create(self, doc: dict) -> dict:
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    @handle_db_errors("pairing.get_for_user")
    async def get_for_user(self, user_id: str, pairing_id: str) -> dict | None:
        return await self.collection.find_one({"pairing_id": pairing_id, "user_id": user_id})

    @handle_db_errors("pairing.get_by_id")
    async def get_by_id(self, pairing_id: str) -> dict | None:
        return await self.collection.find_one({"pairing_id": pairing_id})

    @handle_db_errors("pairing.find_latest_active_by_code")
    async def find_latest_active_by_code(self, code_lookup_hash: str, now: datetime) -> dict | None:
        """Newest unused, unexpired session issued with this code."""
        cursor = (
            self.collection.find(
                {"code_lookup_hash": code_lookup_hash, "used_at": None, "expires_at": {"$gt": now}}
            )
            .sort("created_at", DESCENDING)
            .limit(1)
        )
        docs = await cursor.to_list(length=1)
        return docs[0] if docs else None

    @handle_db_errors("pairing.record_failed_attempt")
    async def record_failed_attempt(self, pairing_id: str, now: datetime, max_attempts: int) -> int:
        """
        Count a wrong code. The session is expired on reaching ``max_attempts``.

        Returns the attempt count after the increment.
        """
        doc = await self.collection.find_one_and_update(
            {"pairing_id": pairing_id, "used_at": None},
            {"$inc": {"attempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            return 0
        attempts = doc.get("attempts", 0)
        if attempts >= max_attempts:
            await self.collection.update_one(
                {"pairing_id": pairing_id, "used_at": None}, {"$set": {"expires_at": now}}
            )
        return attempts

    @handle_db_errors("pairing.mark_used")
    async def mark_used(
        self, pairing_id: str, code_hash: str, now: datetime, max_attempts: int
    ) -> dict | None:
        """
        Consume the session. Matches only while it is unused, unexpired,
        under the attempt limit and the code hash agrees, so exactly one of
        several concurrent completions wins.
        """
        return await self.collection.find_one_and_update(
            {
                "pairing_id": pairing_id,
                "code_hash": code_hash,
                "used_at": None,
                "expires_at": {"$gt": now},
                "attempts": {"$lt": max_attempts},
            },
            {"$set": {"used_at": now}},
            return_document=ReturnDocument.AFTER,
        )
