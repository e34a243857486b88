# trustgate/services/trusted_device_service.py
"""
Trusted device registry.

Every read and write is filtered by (owner_id, owner_type) so one principal
can never see or change another principal's trust state.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from trustgate.core.config import settings
from trustgate.core.exceptions import InvalidInputError, StorageFailureError
from trustgate.db.models.trusted_device_model import OwnerType, TrustedDeviceModel
from trustgate.utils.time_utils import Clock, days_from, utcnow

logger = logging.getLogger(__name__)


def _short(fingerprint: str) -> str:
    return f"{fingerprint[:20]}..." if len(fingerprint) > 20 else fingerprint


def _validate_days(value: int, field_name: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a whole number of days")
    if value < 1 or value > settings.MAX_TRUST_DURATION_DAYS:
        raise InvalidInputError(
            f"{field_name} must be between 1 and {settings.MAX_TRUST_DURATION_DAYS}"
        )
    return value


class TrustedDeviceService:
    def __init__(self, db: AsyncIOMotorDatabase, clock: Clock = utcnow):
        """
        db is a Motor database object (async)
        clock returns the current naive-UTC time; tests swap it to move time
        """
        self.db = db
        self.clock = clock

    @property
    def collection(self):
        return self.db.trusted_devices

    @staticmethod
    def _owner_filter(owner_id: str, owner_type: str) -> Dict[str, Any]:
        return {"owner_id": str(owner_id), "owner_type": OwnerType(owner_type).value}

    def _owned_id_filter(self, device_id: str, owner_id: str, owner_type: str) -> Optional[Dict[str, Any]]:
        # Malformed ids are treated exactly like ids that do not exist
        if not ObjectId.is_valid(device_id):
            return None
        query = self._owner_filter(owner_id, owner_type)
        query["_id"] = ObjectId(device_id)
        return query

    # ------------------------------------------------------------------
    # REGISTER
    # ------------------------------------------------------------------
    async def register(
        self,
        owner_id: str,
        owner_type: str,
        device_fingerprint: str,
        device_name: str,
        device_info: Optional[Dict[str, Any]],
        is_shared_device: bool = False,
        trust_duration_days: Optional[int] = None,
        registered_ip: Optional[str] = None,
    ) -> TrustedDeviceModel:
        """
        Register a device as trusted for the owner.

        Shared devices are rejected outright: they may still be used, but are
        never marked trusted. Older active records for the same fingerprint are
        revoked so one active record governs the fingerprint.

        Raises
        ------
        InvalidInputError
            Missing fingerprint/name/info, shared device, or bad duration.
        StorageFailureError
            The write failed.
        """
        if not device_fingerprint or not device_fingerprint.strip():
            raise InvalidInputError("Device fingerprint, name, and info are required")
        if not device_name or not device_name.strip():
            raise InvalidInputError("Device fingerprint, name, and info are required")
        if device_info is None:
            raise InvalidInputError("Device fingerprint, name, and info are required")
        if is_shared_device:
            raise InvalidInputError("Trusted device registration is not allowed on shared devices")

        if trust_duration_days is None:
            trust_duration_days = settings.DEFAULT_TRUST_DURATION_DAYS
        _validate_days(trust_duration_days, "trust_duration_days")

        now = self.clock()
        device = TrustedDeviceModel(
            owner_id=str(owner_id),
            owner_type=owner_type,
            device_fingerprint=device_fingerprint,
            device_name=device_name.strip(),
            device_info=device_info,
            is_shared_device=False,
            trust_duration_days=trust_duration_days,
            expires_at=days_from(now, trust_duration_days),
            last_used=now,
            registered_ip=registered_ip,
            created_at=now,
        )

        # Insert first: a failed insert must leave the previous trust record untouched
        try:
            result = await self.collection.insert_one(device.to_document())
        except PyMongoError as e:
            logger.error("Error registering trusted device for %s %s: %s", owner_type, owner_id, e)
            raise StorageFailureError("Failed to register trusted device") from e

        device.id = str(result.inserted_id)

        try:
            superseded = await self.collection.update_many(
                {
                    **self._owner_filter(owner_id, owner_type),
                    "device_fingerprint": device_fingerprint,
                    "revoked": False,
                    "_id": {"$ne": result.inserted_id},
                },
                {"$set": {"revoked": True, "revoked_at": now}},
            )
        except PyMongoError as e:
            # The new record is the newest and already governs the fingerprint
            logger.warning(
                "Could not supersede older trust records for %s %s on %s: %s",
                owner_type, owner_id, _short(device_fingerprint), e,
            )
            superseded = None

        if superseded is not None and superseded.modified_count:
            logger.info(
                "Superseded %d earlier trust record(s) for %s %s on %s",
                superseded.modified_count, owner_type, owner_id, _short(device_fingerprint),
            )
        logger.info(
            "Trusted device registered for %s %s: %s (expires: %s)",
            owner_type, owner_id, device.device_name, device.expires_at.isoformat(),
        )
        return device

    # ------------------------------------------------------------------
    # LOOKUP
    # ------------------------------------------------------------------
    async def find_active(
        self,
        owner_id: str,
        owner_type: str,
        device_fingerprint: str,
    ) -> Optional[TrustedDeviceModel]:
        """Newest non-revoked, non-expired record for the fingerprint, or None."""
        query = {
            **self._owner_filter(owner_id, owner_type),
            "device_fingerprint": device_fingerprint,
            "revoked": False,
            "expires_at": {"$gt": self.clock()},
        }
        try:
            cursor = self.collection.find(query).sort("created_at", DESCENDING).limit(1)
            docs = await cursor.to_list(length=1)
        except PyMongoError as e:
            logger.error("Error checking trusted device for %s %s: %s", owner_type, owner_id, e)
            raise StorageFailureError("Failed to check trusted device") from e

        if not docs:
            logger.debug("No trusted device for %s %s on %s", owner_type, owner_id, _short(device_fingerprint))
            return None
        return TrustedDeviceModel.from_document(docs[0])

    async def check_trust(
        self,
        owner_id: str,
        owner_type: str,
        device_fingerprint: str,
    ) -> Optional[TrustedDeviceModel]:
        """
        find_active, then stamp last_used on the matched record.
        """
        device = await self.find_active(owner_id, owner_type, device_fingerprint)
        if device is None:
            return None

        now = self.clock()
        try:
            await self.collection.update_one(
                {**self._owner_filter(owner_id, owner_type), "_id": ObjectId(device.id)},
                {"$set": {"last_used": now}},
            )
        except PyMongoError as e:
            logger.error("Error updating last_used for device %s: %s", device.id, e)
            raise StorageFailureError("Failed to check trusted device") from e

        device.last_used = now
        logger.info("Trusted device verified for %s %s: %s", owner_type, owner_id, device.device_name)
        return device

    async def list_for_owner(
        self,
        owner_id: str,
        owner_type: str,
        include_revoked: bool = False,
    ) -> List[TrustedDeviceModel]:
        query = self._owner_filter(owner_id, owner_type)
        if not include_revoked:
            query["revoked"] = False

        try:
            cursor = self.collection.find(query).sort("created_at", DESCENDING)
            docs = await cursor.to_list(length=None)
        except PyMongoError as e:
            logger.error("Error listing trusted devices for %s %s: %s", owner_type, owner_id, e)
            raise StorageFailureError("Failed to get trusted devices") from e

        return [TrustedDeviceModel.from_document(doc) for doc in docs]

    # ------------------------------------------------------------------
    # LIFECYCLE
    # ------------------------------------------------------------------
    async def revoke(self, device_id: str, owner_id: str, owner_type: str) -> bool:
        """
        Revoke one owned, not-yet-revoked device.

        Returns False when the id is unknown, owned by someone else or already
        revoked; the caller cannot tell these apart.
        """
        query = self._owned_id_filter(device_id, owner_id, owner_type)
        if query is None:
            return False
        query["revoked"] = False

        try:
            result = await self.collection.update_one(
                query, {"$set": {"revoked": True, "revoked_at": self.clock()}}
            )
        except PyMongoError as e:
            logger.error("Error revoking trusted device %s: %s", device_id, e)
            raise StorageFailureError("Failed to revoke trusted device") from e

        if result.modified_count == 0:
            return False
        logger.info("Trusted device %s revoked for %s %s", device_id, owner_type, owner_id)
        return True

    async def revoke_all(self, owner_id: str, owner_type: str) -> int:
        query = {**self._owner_filter(owner_id, owner_type), "revoked": False}
        try:
            result = await self.collection.update_many(
                query, {"$set": {"revoked": True, "revoked_at": self.clock()}}
            )
        except PyMongoError as e:
            logger.error("Error revoking all trusted devices for %s %s: %s", owner_type, owner_id, e)
            raise StorageFailureError("Failed to revoke trusted devices") from e

        logger.info("All trusted devices revoked for %s %s: %d devices", owner_type, owner_id, result.modified_count)
        return result.modified_count

    async def extend(
        self,
        device_id: str,
        owner_id: str,
        owner_type: str,
        additional_days: Optional[int] = None,
    ) -> Optional[datetime]:
        """
        Push expires_at out by additional_days from its current value.

        The update is conditional on the expiry read a moment earlier, so two
        concurrent extends cannot both apply to the same starting value.
        Returns the new expiry, or None if the device is not an owned,
        non-revoked record.
        """
        if additional_days is None:
            additional_days = settings.DEFAULT_EXTEND_DAYS
        _validate_days(additional_days, "additional_days")

        query = self._owned_id_filter(device_id, owner_id, owner_type)
        if query is None:
            return None
        query["revoked"] = False

        try:
            doc = await self.collection.find_one(query)
            if doc is None:
                return None

            new_expires_at = doc["expires_at"] + timedelta(days=additional_days)
            result = await self.collection.update_one(
                {**query, "expires_at": doc["expires_at"]},
                {"$set": {"expires_at": new_expires_at}},
            )
        except PyMongoError as e:
            logger.error("Error extending trusted device %s: %s", device_id, e)
            raise StorageFailureError("Failed to extend trusted device") from e

        if result.modified_count == 0:
            # Revoked or extended by someone else between the read and the write
            return None

        logger.info(
            "Trusted device extended for %s %s: %s (new expiry: %s)",
            owner_type, owner_id, doc["device_name"], new_expires_at.isoformat(),
        )
        return new_expires_at

    async def rename(self, device_id: str, owner_id: str, owner_type: str, new_name: str) -> bool:
        if not new_name or not new_name.strip():
            raise InvalidInputError("Device name is required")

        query = self._owned_id_filter(device_id, owner_id, owner_type)
        if query is None:
            return False

        try:
            result = await self.collection.update_one(query, {"$set": {"device_name": new_name.strip()}})
        except PyMongoError as e:
            logger.error("Error renaming trusted device %s: %s", device_id, e)
            raise StorageFailureError("Failed to update device name") from e

        if result.matched_count == 0:
            return False
        logger.info("Trusted device renamed for %s %s: %s", owner_type, owner_id, new_name.strip())
        return True

    # ------------------------------------------------------------------
    # MAINTENANCE / MONITORING
    # ------------------------------------------------------------------
    async def cleanup_expired(self) -> int:
        """Soft-revoke every record whose trust window has already closed."""
        now = self.clock()
        try:
            result = await self.collection.update_many(
                {"expires_at": {"$lt": now}, "revoked": False},
                {"$set": {"revoked": True, "revoked_at": now}},
            )
        except PyMongoError as e:
            logger.error("Error cleaning up expired trusted devices: %s", e)
            raise StorageFailureError("Failed to clean up expired trusted devices") from e

        if result.modified_count:
            logger.info("Cleaned up %d expired trusted devices", result.modified_count)
        return result.modified_count

    async def get_stats(self) -> Dict[str, int]:
        now = self.clock()
        try:
            total = await self.collection.count_documents({})
            active = await self.collection.count_documents({"revoked": False})
            expired = await self.collection.count_documents(
                {"revoked": False, "expires_at": {"$lt": now}}
            )
            shared = await self.collection.count_documents({"is_shared_device": True})
            owners = await self.collection.distinct("owner_id")
        except PyMongoError as e:
            logger.error("Error getting trusted device stats: %s", e)
            raise StorageFailureError("Failed to get trusted device statistics") from e

        return {
            "total_devices": total,
            "active_devices": active,
            "expired_devices": expired,
            "shared_devices": shared,
            "users_with_trusted_devices": len(owners),
        }
