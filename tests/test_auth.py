from __future__ import annotations

import pytest

from interview_recorder.errors import AuthError
from interview_recorder.services.auth import TokenAuthenticator


@pytest.fixture()
def authenticator() -> TokenAuthenticator:
    return TokenAuthenticator(["demo123", "abc456", ""])


@pytest.mark.parametrize("token", ["demo123", "abc456", " demo123 "])
def test_known_tokens_are_accepted(authenticator: TokenAuthenticator, token: str) -> None:
    assert authenticator.authenticate(token)
    authenticator.require(token)


@pytest.mark.parametrize("token", [None, "", "   ", "demo", "DEMO123", "demo1234", 123])
def test_unknown_tokens_are_rejected(authenticator: TokenAuthenticator, token) -> None:
    assert not authenticator.authenticate(token)
    with pytest.raises(AuthError) as excinfo:
        authenticator.require(token)
    assert excinfo.value.status_code == 401
    assert excinfo.value.to_payload()["error"] == "invalid_token"


def test_empty_allow_list_rejects_everything() -> None:
    authenticator = TokenAuthenticator([])

    assert not authenticator.authenticate("demo123")
