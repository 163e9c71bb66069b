"""Tests for token encryption at rest."""

import pytest

from autopilot.encryption import DecryptionError, TokenCipher, derive_fernet_key
from autopilot.models import TokenSet


@pytest.mark.unit
def test_tokens_are_not_stored_in_plain_text():
    cipher = TokenCipher("secret")
    tokens = TokenSet(access_token="ya29.access", refresh_token="1//refresh", expiry=123)
    stored = cipher.encrypt_tokens(tokens)
    assert set(stored) == {"encrypted"}
    assert "ya29" not in stored["encrypted"]
    assert cipher.decrypt_tokens(stored) == tokens


@pytest.mark.unit
def test_wrong_key_fails_loudly():
    stored = TokenCipher("secret").encrypt_tokens(TokenSet("a", "r", 1))
    with pytest.raises(DecryptionError):
        TokenCipher("other").decrypt_tokens(stored)


@pytest.mark.unit
def test_empty_values():
    cipher = TokenCipher("secret")
    assert cipher.decrypt_tokens(None) is None
    assert cipher.decrypt_tokens({}) is None
    with pytest.raises(ValueError):
        TokenCipher("")


@pytest.mark.unit
def test_key_derivation_is_stable():
    assert derive_fernet_key("secret") == derive_fernet_key("secret")
    assert len(derive_fernet_key("secret")) == 44
