"""
Browser-extension pairing.

The web app (signed in) starts a pairing and shows the user a 6-digit code.
The extension (not signed in) sends the code back and receives a token that
is only good for the import routes.
"""
import hashlib
import hmac
import re
import secrets
from datetime import timedelta

from app.core.audit import audit_logger
from app.core.config import Settings, settings
from app.core.exceptions import PairingExpiredOrInvalidError, PairingNotFoundError
from app.core.metrics import record_pairing
from app.core.security import create_extension_token
from app.core.zoned_time import utc_now
from app.log.logging import logger
from app.models.pairing import (
    DEFAULT_DEVICE_NAME,
    PairingCompleteResponse,
    PairingStartResponse,
    PairingStatusResponse,
)
from app.services.pairing_store import PairingStore

CODE_PATTERN = re.compile(r"^\d{6}$")


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_code(pairing_id: str, code: str) -> str:
    return _sha256(f"{pairing_id}|{code}")


def lookup_hash(code: str) -> str:
    return _sha256(code)


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


class PairingService:

    def __init__(self, store: PairingStore, config: Settings = settings):
        self.store = store
        self.config = config

    async def start_extension_pairing(self, user_id: str, device_name: str | None = None) -> PairingStartResponse:
        now = utc_now()
        pairing_id = secrets.token_hex(16)
        code = generate_code()
        expires_at = now + timedelta(minutes=self.config.pairing_code_ttl_minutes)

        await self.store.create(
            {
                "pairing_id": pairing_id,
                "user_id": user_id,
                "device_name": (device_name or "").strip() or DEFAULT_DEVICE_NAME,
                "code_hash": hash_code(pairing_id, code),
                "code_lookup_hash": lookup_hash(code),
                "attempts": 0,
                "used_at": None,
                "created_at": now,
                "expires_at": expires_at,
            }
        )
        audit_logger.log_pairing_started(user_id, pairing_id, device_name)
        record_pairing("start", "success")
        return PairingStartResponse(pairing_id=pairing_id, code=code, expires_at=expires_at)

    async def get_extension_pairing_status(self, user_id: str, pairing_id: str) -> PairingStatusResponse:
        """
        Raises:
            PairingNotFoundError: unknown id or started by another user.
        """
        doc = await self.store.get_for_user(user_id, pairing_id)
        if doc is None:
            raise PairingNotFoundError(pairing_id)

        used_at = doc.get("used_at")
        expires_at = doc["expires_at"]
        return PairingStatusResponse(
            pairing_id=pairing_id,
            paired=used_at is not None,
            used_at=used_at,
            expires_at=expires_at,
            expired=used_at is None and utc_now() >= expires_at,
        )

    def _reject(self, pairing_id: str | None, reason: str) -> PairingExpiredOrInvalidError:
        audit_logger.log_pairing_rejected(pairing_id, reason)
        record_pairing("complete", "rejected")
        return PairingExpiredOrInvalidError()

    async def complete_extension_pairing(
        self, pairing_id: str | None, code: str | None
    ) -> PairingCompleteResponse:
        """
        Exchange a pairing code for an extension token. Single use.

        Without ``pairing_id`` the newest active session issued with this
        code is used.

        Raises:
            PairingExpiredOrInvalidError: for every failure, whatever the cause.
        """
        code = (code or "").strip()
        pairing_id = (pairing_id or "").strip() or None
        if not CODE_PATTERN.match(code):
            raise self._reject(pairing_id, "malformed code")

        now = utc_now()
        if pairing_id:
            doc = await self.store.get_by_id(pairing_id)
        else:
            doc = await self.store.find_latest_active_by_code(lookup_hash(code), now)
        if doc is None:
            raise self._reject(pairing_id, "unknown pairing")

        pairing_id = doc["pairing_id"]
        if doc.get("used_at") is not None:
            raise self._reject(pairing_id, "already used")
        if doc["expires_at"] <= now:
            raise self._reject(pairing_id, "expired")
        if doc.get("attempts", 0) >= self.config.pairing_max_attempts:
            raise self._reject(pairing_id, "too many attempts")

        if not hmac.compare_digest(doc["code_hash"], hash_code(pairing_id, code)):
            attempts = await self.store.record_failed_attempt(
                pairing_id, now, self.config.pairing_max_attempts
            )
            logger.warning(
                "Wrong pairing code for {pairing_id} (attempt {attempts})",
                pairing_id=pairing_id,
                attempts=attempts,
                event_type="pairing_wrong_code",
            )
            raise self._reject(pairing_id, "wrong code")

        claimed = await self.store.mark_used(
            pairing_id, doc["code_hash"], now, self.config.pairing_max_attempts
        )
        if claimed is None:
            raise self._reject(pairing_id, "consumed concurrently")

        token, expires_at = create_extension_token(claimed["user_id"], pairing_id, now)
        audit_logger.log_pairing_completed(claimed["user_id"], pairing_id)
        record_pairing("complete", "success")
        return PairingCompleteResponse(token=token, user_id=claimed["user_id"], expires_at=expires_at)