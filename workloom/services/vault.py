"""
Credential vault — symmetric encryption of provider credential bundles.

Bundles are JSON-serialized and encrypted with Fernet (AES-128-CBC + HMAC).
The key is loaded once per process from CREDENTIAL_ENCRYPTION_KEY. Plaintext
never leaves this module except as the parsed record handed to a connector.
"""
import json
import logging

from cryptography.fernet import Fernet, InvalidToken

from workloom.config import CREDENTIAL_ENCRYPTION_KEY
from workloom.errors import CredentialError

logger = logging.getLogger('services.vault')


class CredentialVault:

    def __init__(self, key):
        if not key:
            raise CredentialError('CREDENTIAL_ENCRYPTION_KEY is not configured')
        try:
            self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
        except (ValueError, TypeError) as e:
            raise CredentialError('CREDENTIAL_ENCRYPTION_KEY is not a valid Fernet key') from e

    def encrypt(self, bundle: dict) -> str:
        payload = json.dumps(bundle, sort_keys=True).encode('utf-8')
        return self._fernet.encrypt(payload).decode('ascii')

    def decrypt(self, token: str) -> dict:
        try:
            payload = self._fernet.decrypt(token.encode('ascii'))
        except (InvalidToken, AttributeError, UnicodeEncodeError) as e:
            logger.error("Credential decryption failed (wrong key or corrupted token)")
            raise CredentialError('Stored credentials could not be decrypted') from e
        return json.loads(payload)


_vault = None


def get_vault():
    """Process-wide vault built from CREDENTIAL_ENCRYPTION_KEY."""
    global _vault
    if _vault is None:
        _vault = CredentialVault(CREDENTIAL_ENCRYPTION_KEY)
    return _vault
