import asyncio

import pytest

from traveltales.errors import Expired, Mismatch, NotFound
from traveltales.modules.storage import digest
from traveltales.modules.tokens import TokenPurpose


@pytest.mark.asyncio
async def test_issue_stores_only_digest(token_service, redis_client):
    token = await token_service.issue(7, TokenPurpose.EMAIL_VERIFICATION)

    assert len(token) >= 43
    assert await redis_client.exists(f"token:{digest(token)}")
    assert not await redis_client.exists(f"token:{token}")
    assert await token_service.has_outstanding(7, TokenPurpose.EMAIL_VERIFICATION)


@pytest.mark.asyncio
async def test_redeem_returns_payload_once(token_service):
    token = await token_service.issue(
        7, TokenPurpose.PASSWORD_CHANGE, payload={"password_hash": "$2b$04$abc"}
    )

    assert await token_service.redeem(token, 7, TokenPurpose.PASSWORD_CHANGE) == {
        "password_hash": "$2b$04$abc"
    }
    assert not await token_service.has_outstanding(7, TokenPurpose.PASSWORD_CHANGE)

    with pytest.raises(NotFound):
        await token_service.redeem(token, 7, TokenPurpose.PASSWORD_CHANGE)


@pytest.mark.asyncio
async def test_new_token_supersedes_previous(token_service, redis_client):
    """At most one unconsumed token per (account, purpose)."""
    first = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)
    second = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)

    assert first != second
    assert not await redis_client.exists(f"token:{digest(first)}")

    with pytest.raises(NotFound):
        await token_service.redeem(first, 7, TokenPurpose.PASSWORD_RESET)
    await token_service.redeem(second, 7, TokenPurpose.PASSWORD_RESET)


@pytest.mark.asyncio
async def test_purposes_are_independent(token_service):
    reset = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)
    verify = await token_service.issue(7, TokenPurpose.EMAIL_VERIFICATION)

    await token_service.redeem(reset, 7, TokenPurpose.PASSWORD_RESET)
    await token_service.redeem(verify, 7, TokenPurpose.EMAIL_VERIFICATION)


@pytest.mark.asyncio
async def test_expired_token_is_rejected(token_service, clock):
    token = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)

    clock.advance(3600)

    with pytest.raises(Expired):
        await token_service.redeem(token, 7, TokenPurpose.PASSWORD_RESET)


@pytest.mark.asyncio
async def test_verification_token_lasts_a_day(token_service, clock):
    token = await token_service.issue(7, TokenPurpose.EMAIL_VERIFICATION)

    clock.advance(86400 - 1)

    await token_service.redeem(token, 7, TokenPurpose.EMAIL_VERIFICATION)


@pytest.mark.asyncio
async def test_wrong_account_or_purpose_is_mismatch(token_service):
    token = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)

    with pytest.raises(Mismatch):
        await token_service.redeem(token, 8, TokenPurpose.PASSWORD_RESET)
    with pytest.raises(Mismatch):
        await token_service.redeem(token, 7, TokenPurpose.EMAIL_CHANGE)

    # A mismatched attempt does not burn the token
    await token_service.redeem(token, 7, TokenPurpose.PASSWORD_RESET)


@pytest.mark.asyncio
async def test_unknown_token_not_found(token_service):
    with pytest.raises(NotFound):
        await token_service.redeem("made-up-token", 7, TokenPurpose.PASSWORD_RESET)
    with pytest.raises(NotFound):
        await token_service.redeem("", 7, TokenPurpose.PASSWORD_RESET)


@pytest.mark.asyncio
async def test_concurrent_redeem_has_single_winner(token_service):
    token = await token_service.issue(7, TokenPurpose.EMAIL_VERIFICATION)

    results = await asyncio.gather(
        *(token_service.redeem(token, 7, TokenPurpose.EMAIL_VERIFICATION) for _ in range(5)),
        return_exceptions=True,
    )

    successes = [r for r in results if isinstance(r, dict)]
    failures = [r for r in results if isinstance(r, NotFound)]
    assert len(successes) == 1
    assert len(failures) == 4


@pytest.mark.asyncio
async def test_revoke_all_drops_current_tokens(token_service):
    reset = await token_service.issue(7, TokenPurpose.PASSWORD_RESET)
    change = await token_service.issue(7, TokenPurpose.EMAIL_CHANGE, payload={"new_email": "x@y.z"})

    await token_service.revoke_all(7)

    for token, purpose in ((reset, TokenPurpose.PASSWORD_RESET), (change, TokenPurpose.EMAIL_CHANGE)):
        with pytest.raises(NotFound):
            await token_service.redeem(token, 7, purpose)
