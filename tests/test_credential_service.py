"""Credential store tests — upsert semantics and the sign counter."""

import asyncio
import uuid

import pytest
import pytest_asyncio

from keyward.db.models import Attachment
from keyward.errors import NotFoundError
from keyward.services.account_service import AccountService
from keyward.services.credential_service import CredentialRecord, CredentialService


@pytest.fixture()
def record():
    return CredentialRecord(
        credential_id=b"\x01" * 32,
        public_key=b"cose-key-v1",
        transports=["usb"],
        sign_count=0,
        aaguid=bytes(range(16)),
        attachment=Attachment.CROSS_PLATFORM,
        name="YubiKey",
    )


@pytest_asyncio.fixture()
async def account_id(db_session):
    return await AccountService(db_session).create_account("keys@example.com", "pw")


@pytest.mark.asyncio
async def test_store_and_load(db_session, account_id, record):
    svc = CredentialService(db_session)
    stored = await svc.store_credential(account_id, record)

    assert stored.credential_id == record.credential_id
    assert stored.public_key == b"cose-key-v1"
    assert stored.attachment == "cross-platform"
    assert stored.transports == ["usb"]
    assert stored.clone_warning is False

    loaded = await svc.load_credentials(account_id)
    assert [c.id for c in loaded] == [stored.id]


@pytest.mark.asyncio
async def test_store_twice_keeps_one_row(db_session, account_id, record):
    svc = CredentialService(db_session)
    first = await svc.store_credential(account_id, record)

    record.public_key = b"cose-key-v2"
    record.sign_count = 7
    record.transports = ["usb", "nfc"]
    second = await svc.store_credential(account_id, record)

    assert second.id == first.id
    assert second.public_key == b"cose-key-v2"
    assert second.sign_count == 7
    assert second.transports == ["usb", "nfc"]
    assert len(await svc.load_credentials(account_id)) == 1


@pytest.mark.asyncio
async def test_same_credential_id_on_two_accounts(db_session, account_id, record):
    other_id = await AccountService(db_session).create_account("other@example.com", "pw")
    svc = CredentialService(db_session)

    await svc.store_credential(account_id, record)
    await svc.store_credential(other_id, record)

    assert len(await svc.load_credentials(account_id)) == 1
    assert len(await svc.load_credentials(other_id)) == 1


@pytest.mark.asyncio
async def test_concurrent_upserts(session_factory, account_id, record):
    async def store(count):
        async with session_factory() as session:
            record_copy = CredentialRecord(**{**record.__dict__, "sign_count": count})
            await CredentialService(session).store_credential(account_id, record_copy)

    await asyncio.gather(*(store(n) for n in range(5)))

    async with session_factory() as session:
        rows = await CredentialService(session).load_credentials(account_id)
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_empty_account(db_session):
    assert await CredentialService(db_session).load_credentials(uuid.uuid4()) == []


# ═══════════════════════════════════════════════════════════
# Sign counter
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_counter_moves_forward(db_session, account_id, record):
    svc = CredentialService(db_session)
    record.sign_count = 3
    await svc.store_credential(account_id, record)

    updated = await svc.record_authentication(account_id, record.credential_id, 4)
    assert updated.sign_count == 4
    assert updated.clone_warning is False
    assert updated.last_used_at is not None


@pytest.mark.asyncio
@pytest.mark.parametrize("reported", [3, 2, 0])
async def test_counter_regression_sets_clone_warning(db_session, account_id, record, reported):
    svc = CredentialService(db_session)
    record.sign_count = 3
    await svc.store_credential(account_id, record)

    updated = await svc.record_authentication(account_id, record.credential_id, reported)
    assert updated.clone_warning is True
    assert updated.sign_count == 3


@pytest.mark.asyncio
async def test_zero_counter_authenticator_never_warns(db_session, account_id, record):
    svc = CredentialService(db_session)
    await svc.store_credential(account_id, record)

    updated = await svc.record_authentication(account_id, record.credential_id, 0)
    assert updated.clone_warning is False
    assert updated.sign_count == 0


@pytest.mark.asyncio
async def test_clone_warning_sticks(db_session, account_id, record):
    svc = CredentialService(db_session)
    record.sign_count = 5
    await svc.store_credential(account_id, record)

    await svc.record_authentication(account_id, record.credential_id, 5)
    updated = await svc.record_authentication(account_id, record.credential_id, 9)
    assert updated.sign_count == 9
    assert updated.clone_warning is True


@pytest.mark.asyncio
async def test_record_authentication_unknown_credential(db_session, account_id):
    with pytest.raises(NotFoundError):
        await CredentialService(db_session).record_authentication(account_id, b"nope", 1)


# ═══════════════════════════════════════════════════════════
# Deletion
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_delete_credential(db_session, account_id, record):
    svc = CredentialService(db_session)
    stored = await svc.store_credential(account_id, record)

    await svc.delete_credential(account_id, stored.id)
    assert await svc.load_credentials(account_id) == []

    with pytest.raises(NotFoundError):
        await svc.delete_credential(account_id, stored.id)


@pytest.mark.asyncio
async def test_cannot_delete_someone_elses_credential(db_session, account_id, record):
    svc = CredentialService(db_session)
    stored = await svc.store_credential(account_id, record)

    with pytest.raises(NotFoundError):
        await svc.delete_credential(uuid.uuid4(), stored.id)
    assert len(await svc.load_credentials(account_id)) == 1
