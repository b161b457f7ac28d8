import pytest

from traveltales.modules.security import CsrfGuard


@pytest.fixture
def guard():
    return CsrfGuard("csrf-secret-for-tests")


def test_minted_token_validates_for_its_session(guard):
    token = guard.mint("session-1")

    assert guard.validate(token, token, "session-1")


def test_token_bound_to_session(guard):
    token = guard.mint("session-1")

    assert not guard.validate(token, token, "session-2")
    assert not guard.validate(token, token, None)


def test_header_must_match_cookie(guard):
    token = guard.mint("session-1")
    other = guard.mint("session-1")

    assert not guard.validate(token, other, "session-1")
    assert not guard.validate(token, None, "session-1")
    assert not guard.validate(None, token, "session-1")


def test_forged_signature_rejected(guard):
    nonce = guard.mint("session-1").split(".")[0]
    forged = f"{nonce}.{'0' * 64}"

    assert not guard.validate(forged, forged, "session-1")
    assert not guard.validate("garbage", "garbage", "session-1")


def test_different_secret_rejects(guard):
    token = CsrfGuard("another-secret").mint("session-1")

    assert not guard.validate(token, token, "session-1")


def test_tokens_are_unique(guard):
    assert guard.mint("session-1") != guard.mint("session-1")


def test_secret_required():
    with pytest.raises(ValueError):
        CsrfGuard("")
