"""
Fernet encryption for OAuth token sets stored on accounts.

The Fernet key is derived from ``AUTOPILOT_ENCRYPTION_KEY``:
sha256(secret) -> urlsafe base64 -> Fernet. Stored form on the account is
``{"encrypted": "<fernet token>"}``.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from autopilot.errors import AutopilotError
from autopilot.models import TokenSet


class DecryptionError(AutopilotError):
    """Stored ciphertext could not be decrypted with the configured key."""


def derive_fernet_key(secret: str) -> bytes:
    derived = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(derived)


class TokenCipher:
    """Encrypts and decrypts ``TokenSet`` values for storage."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("An encryption secret is required (AUTOPILOT_ENCRYPTION_KEY)")
        self._fernet = Fernet(derive_fernet_key(secret))

    def encrypt_data(self, payload: Dict) -> str:
        raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return self._fernet.encrypt(raw).decode("ascii")

    def decrypt_data(self, ciphertext: str) -> Dict:
        try:
            raw = self._fernet.decrypt(ciphertext.encode("ascii"))
        except InvalidToken as exc:
            raise DecryptionError("Stored credentials could not be decrypted") from exc
        return json.loads(raw.decode("utf-8"))

    def encrypt_tokens(self, tokens: TokenSet) -> Dict[str, str]:
        return {"encrypted": self.encrypt_data(tokens.to_dict())}

    def decrypt_tokens(self, stored: Optional[Dict[str, str]]) -> Optional[TokenSet]:
        if not stored or not stored.get("encrypted"):
            return None
        return TokenSet.from_dict(self.decrypt_data(stored["encrypted"]))
