"""
Tests for the trusted device registry
"""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bson import ObjectId
from pymongo.errors import AutoReconnect, ServerSelectionTimeoutError

from trustgate.core.exceptions import InvalidInputError, StorageFailureError
from trustgate.services.trusted_device_service import TrustedDeviceService


async def register(service, owner_id="U1", owner_type="client", fingerprint="fp-123", **kwargs):
    params = {
        "device_name": "Work laptop",
        "device_info": {"browser": "Firefox", "os": "Linux"},
        "trust_duration_days": 30,
    }
    params.update(kwargs)
    return await service.register(owner_id, owner_type, fingerprint, **params)


# ============================================================================
# REGISTRATION
# ============================================================================

@pytest.mark.asyncio
async def test_register_computes_expiry_from_duration(service, clock):
    device = await register(service, trust_duration_days=14)

    assert device.id is not None
    assert device.expires_at == clock.now + timedelta(days=14)
    assert device.revoked is False
    assert device.is_shared_device is False
    assert device.device_info == {"browser": "Firefox", "os": "Linux"}


@pytest.mark.asyncio
async def test_register_uses_default_duration(service, clock):
    device = await register(service, trust_duration_days=None)
    assert device.expires_at == clock.now + timedelta(days=30)


@pytest.mark.asyncio
async def test_shared_device_registration_rejected_and_nothing_written(service, db):
    with pytest.raises(InvalidInputError, match="shared devices"):
        await register(service, is_shared_device=True)

    assert await db.trusted_devices.count_documents({}) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [
    ("device_name", ""),
    ("device_name", "   "),
    ("device_info", None),
])
async def test_register_requires_name_and_info(service, db, field, value):
    with pytest.raises(InvalidInputError):
        await register(service, **{field: value})
    assert await db.trusted_devices.count_documents({}) == 0


@pytest.mark.asyncio
async def test_register_requires_fingerprint(service):
    with pytest.raises(InvalidInputError):
        await register(service, fingerprint="")


@pytest.mark.asyncio
@pytest.mark.parametrize("days", [0, -3, 366])
async def test_register_rejects_out_of_range_duration(service, days):
    with pytest.raises(InvalidInputError):
        await register(service, trust_duration_days=days)


@pytest.mark.asyncio
async def test_reregistering_fingerprint_supersedes_older_record(service, db, clock):
    first = await register(service)
    clock.advance(days=1)
    second = await register(service, device_name="Renamed laptop")

    active = await service.find_active("U1", "client", "fp-123")
    assert active.id == second.id

    history = await service.list_for_owner("U1", "client", include_revoked=True)
    assert [d.id for d in history] == [second.id, first.id]
    assert history[1].revoked is True
    assert await db.trusted_devices.count_documents({}) == 2


@pytest.mark.asyncio
async def test_failed_reregistration_keeps_previous_record_active(service, db, clock):
    first = await register(service)
    clock.advance(days=1)

    failing_insert = AsyncMock(side_effect=AutoReconnect("connection lost"))
    with patch.object(type(db.trusted_devices), "insert_one", failing_insert):
        with pytest.raises(StorageFailureError):
            await register(service, device_name="Renamed laptop")

    failing_insert.assert_awaited_once()
    active = await service.find_active("U1", "client", "fp-123")
    assert active is not None
    assert active.id == first.id
    assert await db.trusted_devices.count_documents({"revoked": True}) == 0


# ============================================================================
# LOOKUP
# ============================================================================

@pytest.mark.asyncio
async def test_find_active_returns_none_when_never_registered(service):
    assert await service.find_active("U1", "client", "fp-unknown") is None


@pytest.mark.asyncio
async def test_find_active_is_scoped_by_owner_and_type(service):
    await register(service, owner_id="U1", owner_type="client")

    assert await service.find_active("U2", "client", "fp-123") is None
    assert await service.find_active("U1", "employee", "fp-123") is None
    assert await service.find_active("U1", "client", "fp-123") is not None


@pytest.mark.asyncio
async def test_trust_expires_after_window(service, clock):
    await register(service, trust_duration_days=30)

    trusted = await service.check_trust("U1", "client", "fp-123")
    assert trusted is not None
    assert trusted.expires_at == clock.now + timedelta(days=30)

    clock.advance(days=31)
    assert await service.check_trust("U1", "client", "fp-123") is None


@pytest.mark.asyncio
async def test_check_trust_refreshes_last_used(service, db, clock):
    device = await register(service)
    clock.advance(hours=5)

    trusted = await service.check_trust("U1", "client", "fp-123")

    assert trusted.last_used == clock.now
    stored = await db.trusted_devices.find_one({"_id": ObjectId(device.id)})
    assert stored["last_used"] == clock.now


@pytest.mark.asyncio
async def test_list_for_owner_newest_first_and_filters_revoked(service, clock):
    older = await register(service, fingerprint="fp-a")
    clock.advance(minutes=1)
    newer = await register(service, fingerprint="fp-b")
    await register(service, owner_id="U2", fingerprint="fp-c")

    await service.revoke(older.id, "U1", "client")

    active = await service.list_for_owner("U1", "client")
    assert [d.id for d in active] == [newer.id]

    everything = await service.list_for_owner("U1", "client", include_revoked=True)
    assert [d.id for d in everything] == [newer.id, older.id]


# ============================================================================
# LIFECYCLE
# ============================================================================

@pytest.mark.asyncio
async def test_revoke_makes_device_untrusted(service, clock):
    device = await register(service)

    assert await service.revoke(device.id, "U1", "client") is True
    assert await service.find_active("U1", "client", "fp-123") is None

    revoked = (await service.list_for_owner("U1", "client", include_revoked=True))[0]
    assert revoked.revoked is True
    assert revoked.revoked_at == clock.now


@pytest.mark.asyncio
async def test_revoke_twice_returns_false(service):
    device = await register(service)
    assert await service.revoke(device.id, "U1", "client") is True
    assert await service.revoke(device.id, "U1", "client") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("device_id", ["not-an-object-id", str(ObjectId())])
async def test_revoke_unknown_id_returns_false(service, device_id):
    assert await service.revoke(device_id, "U1", "client") is False


@pytest.mark.asyncio
async def test_other_principal_cannot_mutate_device(service, db):
    device = await register(service, owner_id="U1")
    before = await db.trusted_devices.find_one({"_id": ObjectId(device.id)})

    assert await service.revoke(device.id, "U2", "client") is False
    assert await service.revoke(device.id, "U1", "employee") is False
    assert await service.extend(device.id, "U2", "client", 10) is None
    assert await service.rename(device.id, "U2", "client", "Mine now") is False

    after = await db.trusted_devices.find_one({"_id": ObjectId(device.id)})
    assert after == before


@pytest.mark.asyncio
async def test_revoke_all_counts_active_devices_only(service):
    for fp in ("fp-1", "fp-2", "fp-3"):
        await register(service, fingerprint=fp)
    await register(service, owner_id="U2", fingerprint="fp-1")

    assert await service.revoke_all("U1", "client") == 3
    for fp in ("fp-1", "fp-2", "fp-3"):
        assert await service.find_active("U1", "client", fp) is None

    assert await service.find_active("U2", "client", "fp-1") is not None
    assert await service.revoke_all("U1", "client") == 0


@pytest.mark.asyncio
async def test_extend_adds_to_current_expiry_not_now(service, clock):
    device = await register(service, trust_duration_days=30)
    original_expiry = device.expires_at
    clock.advance(days=10)

    new_expiry = await service.extend(device.id, "U1", "client", 15)

    assert new_expiry == original_expiry + timedelta(days=15)
    stored = await service.find_active("U1", "client", "fp-123")
    assert stored.expires_at == new_expiry
    # reading again does not move it
    assert (await service.find_active("U1", "client", "fp-123")).expires_at == new_expiry


@pytest.mark.asyncio
async def test_extend_twice_accumulates(service):
    device = await register(service, trust_duration_days=30)

    await service.extend(device.id, "U1", "client", 5)
    second = await service.extend(device.id, "U1", "client", 5)

    assert second == device.expires_at + timedelta(days=10)


@pytest.mark.asyncio
async def test_extend_revoked_device_returns_none(service):
    device = await register(service)
    await service.revoke(device.id, "U1", "client")
    assert await service.extend(device.id, "U1", "client", 5) is None


@pytest.mark.asyncio
async def test_extend_rejects_bad_day_count(service):
    device = await register(service)
    with pytest.raises(InvalidInputError):
        await service.extend(device.id, "U1", "client", 0)


@pytest.mark.asyncio
async def test_rename_strips_and_persists(service):
    device = await register(service)

    assert await service.rename(device.id, "U1", "client", "  Home desktop ") is True
    renamed = await service.find_active("U1", "client", "fp-123")
    assert renamed.device_name == "Home desktop"


@pytest.mark.asyncio
async def test_rename_requires_name(service):
    device = await register(service)
    with pytest.raises(InvalidInputError):
        await service.rename(device.id, "U1", "client", "  ")


# ============================================================================
# MAINTENANCE / STATS
# ============================================================================

@pytest.mark.asyncio
async def test_cleanup_expired_revokes_only_lapsed_records(service, clock):
    await register(service, fingerprint="fp-short", trust_duration_days=1)
    await register(service, fingerprint="fp-long", trust_duration_days=60)
    clock.advance(days=2)

    assert await service.cleanup_expired() == 1
    devices = await service.list_for_owner("U1", "client")
    assert [d.device_fingerprint for d in devices] == ["fp-long"]


@pytest.mark.asyncio
async def test_stats(service, db, clock):
    await register(service, owner_id="U1", fingerprint="fp-1", trust_duration_days=1)
    await register(service, owner_id="U1", fingerprint="fp-2")
    revoked = await register(service, owner_id="U2", fingerprint="fp-3")
    await service.revoke(revoked.id, "U2", "client")
    # shared records only arrive through migrated data
    await db.trusted_devices.insert_one({
        "owner_id": "U3", "owner_type": "employee", "device_fingerprint": "fp-kiosk",
        "device_name": "Lobby kiosk", "device_info": {}, "is_shared_device": True,
        "trust_duration_days": 30, "expires_at": clock.now + timedelta(days=30),
        "last_used": clock.now, "revoked": False, "revoked_at": None, "created_at": clock.now,
    })
    clock.advance(days=2)

    stats = await service.get_stats()

    assert stats == {
        "total_devices": 4,
        "active_devices": 3,
        "expired_devices": 1,
        "shared_devices": 1,
        "users_with_trusted_devices": 3,
    }


@pytest.mark.asyncio
async def test_storage_errors_are_wrapped(clock):
    broken_db = MagicMock()
    broken_db.trusted_devices.find.side_effect = ServerSelectionTimeoutError("mongo down")
    service = TrustedDeviceService(broken_db, clock=clock)

    with pytest.raises(StorageFailureError):
        await service.find_active("U1", "client", "fp-123")
