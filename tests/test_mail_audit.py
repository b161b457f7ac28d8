import json
from unittest.mock import AsyncMock

import pytest

from traveltales.modules.api import AuditLog
from traveltales.modules.mail import MailMessage, MailService, OutboxMailer


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.lpush = AsyncMock()
    redis.ltrim = AsyncMock()
    return redis


@pytest.mark.asyncio
async def test_outbox_mailer_caps_list(mock_redis, clock):
    mailer = OutboxMailer(mock_redis, clock=clock)

    await mailer.send(MailMessage(to="a@example.com", subject="Hi", body="Hello", kind="test"))

    key, payload = mock_redis.lpush.call_args[0]
    assert key == "mail:outbox"
    stored = json.loads(payload)
    assert stored["to"] == "a@example.com"
    assert stored["sent_at"] == clock.now.isoformat()
    mock_redis.ltrim.assert_awaited_once_with("mail:outbox", 0, 999)


@pytest.mark.asyncio
async def test_verification_link(mailer):
    service = MailService(mailer, frontend_url="http://frontend.test/", sender="no-reply@test")

    await service.send_verification("bob@example.com", "bob", "abc123", 7)

    message = mailer.messages[-1]
    assert message.kind == "email_verification"
    assert message.sender == "no-reply@test"
    assert message.link == "http://frontend.test/verify-email?token=abc123&userId=7"
    assert message.link in message.body


@pytest.mark.asyncio
async def test_change_links_use_distinct_paths(mailer):
    service = MailService(mailer, frontend_url="http://frontend.test", sender="no-reply@test")

    await service.send_password_reset("bob@example.com", "bob", "t1", 7)
    await service.send_password_change_verification("bob@example.com", "bob", "t2", 7)
    await service.send_email_change_verification("new@example.com", "bob", "t3", 7)

    assert [m.link.split("?")[0] for m in mailer.messages] == [
        "http://frontend.test/reset-password",
        "http://frontend.test/verify-password-change",
        "http://frontend.test/verify-email-change",
    ]


@pytest.mark.asyncio
async def test_email_changed_notifies_both_addresses(mailer):
    service = MailService(mailer, frontend_url="http://frontend.test", sender="no-reply@test")

    await service.send_email_changed("old@example.com", "new@example.com")

    assert [m.to for m in mailer.of_kind("email_changed")] == ["old@example.com", "new@example.com"]
    assert all(m.link is None for m in mailer.messages)


@pytest.mark.asyncio
async def test_audit_redacts_secrets(mock_redis, clock):
    audit = AuditLog(mock_redis, clock=clock)

    await audit.record("login_failed", ip="10.0.0.1", username="bob", password="hunter2", api_key="tt_x")

    key, payload = mock_redis.lpush.call_args[0]
    assert key == "auth:audit"
    event = json.loads(payload)
    assert event["type"] == "login_failed"
    assert event["ip"] == "10.0.0.1"
    assert event["data"] == {"username": "bob", "password": "[REDACTED]", "api_key": "[REDACTED]"}
    assert "hunter2" not in payload
    mock_redis.ltrim.assert_awaited_once_with("auth:audit", 0, 9999)
