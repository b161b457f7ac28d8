from unittest.mock import AsyncMock, patch

import pytest

from traveltales.errors import Conflict, NotFound, ValidationFailed
from traveltales.modules.accounts import Role
from conftest import TEST_PASSWORD


@pytest.mark.asyncio
async def test_create_account_starts_unverified(account_store):
    """New accounts are users, unverified, with a bcrypt hash."""
    account = await account_store.create_account(
        "alice", "Alice@Example.com", TEST_PASSWORD, first_name="Alice", last_name="Smith"
    )

    assert account.id == 1
    assert account.email == "alice@example.com"
    assert account.verified is False
    assert account.role == Role.USER
    assert account.password_hash.startswith("$2")
    assert TEST_PASSWORD not in account.password_hash

    stored = await account_store.get(account.id)
    assert stored.username == "alice"
    assert await account_store.verify_password(stored, TEST_PASSWORD)
    assert not await account_store.verify_password(stored, "wrong-passw0rd")


@pytest.mark.asyncio
async def test_authenticate(account_store):
    account = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)

    assert (await account_store.authenticate("alice", TEST_PASSWORD)).id == account.id
    assert await account_store.authenticate("alice", "Wr0ngPassword") is None
    assert await account_store.authenticate("ghost", TEST_PASSWORD) is None


@pytest.mark.asyncio
async def test_authenticate_unknown_username_still_checks_a_hash(account_store):
    checker = AsyncMock(return_value=False)

    with patch("traveltales.modules.accounts.store.verify_password", checker):
        assert await account_store.authenticate("ghost", TEST_PASSWORD) is None
        assert await account_store.authenticate("phantom", TEST_PASSWORD) is None

    assert checker.await_count == 2
    first, second = (call.args for call in checker.await_args_list)
    assert first[0] == TEST_PASSWORD
    assert first[1].startswith("$2b$04$")
    # One placeholder hash per store
    assert first[1] == second[1]


@pytest.mark.asyncio
async def test_duplicate_username_and_email_conflict(account_store):
    await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)

    with pytest.raises(Conflict) as exc_info:
        await account_store.create_account("ALICE", "other@example.com", TEST_PASSWORD)
    assert exc_info.value.reason == "username_taken"

    with pytest.raises(Conflict) as exc_info:
        await account_store.create_account("bob", "ALICE@example.com", TEST_PASSWORD)
    assert exc_info.value.reason == "email_taken"

    assert len(await account_store.list_accounts()) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "username,email,password,reason",
    [
        ("al", "al@example.com", TEST_PASSWORD, "invalid_username"),
        ("alice smith", "alice@example.com", TEST_PASSWORD, "invalid_username"),
        ("alice", "not-an-email", TEST_PASSWORD, "invalid_email"),
        ("alice", "alice@example.com", "short1", "weak_password"),
        ("alice", "alice@example.com", "lettersonly", "weak_password"),
    ],
)
async def test_create_account_rejects_invalid_input(account_store, username, email, password, reason):
    with pytest.raises(ValidationFailed) as exc_info:
        await account_store.create_account(username, email, password)
    assert exc_info.value.reason == reason


@pytest.mark.asyncio
async def test_find_by_username_and_email(account_store):
    created = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)

    assert (await account_store.find_by_username("Alice")).id == created.id
    assert (await account_store.find_by_email(" ALICE@example.com ")).id == created.id
    assert await account_store.find_by_username("nobody") is None
    assert await account_store.find_by_email("") is None


@pytest.mark.asyncio
async def test_update_profile_only_touches_whitelisted_fields(account_store):
    account = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)

    updated = await account_store.update_profile(
        account.id, {"first_name": "<b>Ally</b>", "email": "evil@example.com", "role": "admin"}
    )

    assert updated.first_name == "bAlly/b"
    assert updated.email == "alice@example.com"
    assert updated.role == Role.USER

    with pytest.raises(ValidationFailed):
        await account_store.update_profile(account.id, {"role": "admin"})


@pytest.mark.asyncio
async def test_change_password_final_bumps_session_epoch(account_store):
    account = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)

    updated = await account_store.change_password_final(account.id, "$2b$04$replacementhash")

    assert updated.session_epoch == account.session_epoch + 1
    assert updated.password_hash == "$2b$04$replacementhash"


@pytest.mark.asyncio
async def test_change_email_final_swaps_index(account_store):
    account = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)
    await account_store.create_account("bob", "bob@example.com", TEST_PASSWORD)

    with pytest.raises(Conflict):
        await account_store.change_email_final(account.id, "bob@example.com")

    updated = await account_store.change_email_final(account.id, "New@Example.com")
    assert updated.email == "new@example.com"
    assert updated.session_epoch == 1
    assert await account_store.find_by_email("alice@example.com") is None
    assert (await account_store.find_by_email("new@example.com")).id == account.id

    # The freed address can be claimed again
    await account_store.create_account("carol", "alice@example.com", TEST_PASSWORD)


@pytest.mark.asyncio
async def test_delete_account_runs_cascades(account_store):
    account = await account_store.create_account("alice", "alice@example.com", TEST_PASSWORD)
    cascaded = []

    async def hook(account_id):
        cascaded.append(account_id)

    account_store.add_cascade(hook)
    await account_store.delete_account(account.id)

    assert cascaded == [account.id]
    assert await account_store.get(account.id) is None
    assert await account_store.find_by_username("alice") is None

    with pytest.raises(NotFound):
        await account_store.delete_account(account.id)


@pytest.mark.asyncio
async def test_ensure_admin_is_idempotent(account_store):
    first = await account_store.ensure_admin("admin", "admin@example.com", "AdminPassw0rd")
    assert first.role == Role.ADMIN
    assert first.verified

    again = await account_store.ensure_admin("admin", "admin@example.com", "Rotated1234")
    assert again.id == first.id
    assert await account_store.verify_password(again, "Rotated1234")
    assert len(await account_store.list_accounts()) == 1
