"""Credential collaborator: decrypt-on-demand string accessor."""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Optional

from .exceptions import CredentialNotFoundError


class CredentialProvider(ABC):
    """Source of decrypted credential payloads."""

    @abstractmethod
    def get_decrypted_data(self, credential_id: str) -> str:
        """Return the decrypted payload, raising CredentialNotFoundError if unknown."""


class InMemoryCredentials(CredentialProvider):
    """Plain dictionary of credential payloads."""

    def __init__(self, credentials: Optional[Dict[str, str]] = None):
        self._credentials = dict(credentials or {})
        self._lock = threading.Lock()

    def add(self, credential_id: str, data: str) -> None:
        with self._lock:
            self._credentials[credential_id] = data

    def get_decrypted_data(self, credential_id: str) -> str:
        with self._lock:
            if credential_id not in self._credentials:
                raise CredentialNotFoundError(credential_id)
            return self._credentials[credential_id]
