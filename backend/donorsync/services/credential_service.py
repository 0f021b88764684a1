"""Credential lookup for CRM providers."""

from abc import ABC, abstractmethod
from typing import Callable

from cryptography.fernet import InvalidToken

from donorsync.database import Database
from donorsync.exceptions import CredentialNotFoundError
from donorsync.utils.encryption import decrypt_token


class CredentialProvider(ABC):
    @abstractmethod
    def resolve(self, account_id: str, provider: str) -> str:
        """
        Return the plain-text secret for (account, provider).

        Raises:
            CredentialNotFoundError: If nothing usable is stored.
        """


class SupabaseCredentialProvider(CredentialProvider):
    """Reads Fernet-encrypted keys from the user_keys table."""

    def __init__(self, db: Database, decrypt: Callable[[str], str] = decrypt_token):
        self.db = db
        self._decrypt = decrypt

    def resolve(self, account_id, provider):
        row = self.db.get_crm_user_key(account_id, provider)
        if not row or not row.get("encrypted_key"):
            raise CredentialNotFoundError(f"No {provider} key stored for account")

        try:
            secret = self._decrypt(row["encrypted_key"])
        except InvalidToken as e:
            raise CredentialNotFoundError(
                f"Stored {provider} key could not be decrypted"
            ) from e

        if not secret.strip():
            raise CredentialNotFoundError(f"Stored {provider} key is empty")
        return secret


class StaticCredentialProvider(CredentialProvider):
    """In-memory secrets, keyed by (account_id, provider)."""

    def __init__(self, secrets: dict[tuple[str, str], str] | None = None):
        self.secrets = dict(secrets or {})

    def set(self, account_id: str, provider: str, secret: str) -> None:
        self.secrets[(account_id, provider)] = secret

    def resolve(self, account_id, provider):
        secret = self.secrets.get((account_id, provider))
        if not secret:
            raise CredentialNotFoundError(f"No {provider} key stored for account")
        return secret
