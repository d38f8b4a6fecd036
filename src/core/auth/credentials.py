"""
Client credential providers for the remote table service.

The stream handshake authenticates with an OAuth client id/secret pair.
Token exchange and refresh happen inside the transport, so this module
only decides where the pair comes from.

Supported sources:
    - Static: credentials passed in directly (tests, local CLI)
    - Environment: DATABRICKS_CLIENT_ID / DATABRICKS_CLIENT_SECRET

Example:
    >>> provider = EnvCredentialProvider()
    >>> creds = provider.get_credentials()
    >>> creds.client_id
    'my-service-principal'
"""

import logging
import os
from dataclasses import dataclass, field

from core.errors.exceptions import AuthError

logger = logging.getLogger(__name__)

CLIENT_ID_ENV = "DATABRICKS_CLIENT_ID"
CLIENT_SECRET_ENV = "DATABRICKS_CLIENT_SECRET"


@dataclass(frozen=True)
class ClientCredentials:
    """OAuth client credentials. The secret never appears in repr or logs."""

    client_id: str
    client_secret: str = field(repr=False)

    def masked(self) -> str:
        """Client id with the secret redacted, safe for log lines."""
        return f"{self.client_id}:***"


class StaticCredentialProvider:
    """Returns the same credentials on every call."""

    def __init__(self, client_id: str, client_secret: str):
        if not client_id or not client_secret:
            raise AuthError("client_id and client_secret are required")
        self._credentials = ClientCredentials(client_id, client_secret)

    def get_credentials(self) -> ClientCredentials:
        return self._credentials


class EnvCredentialProvider:
    """
    Reads credentials from the environment on each call.

    Reading lazily lets a container pick up rotated secrets without a
    restart of the process.
    """

    def __init__(
        self,
        client_id_var: str = CLIENT_ID_ENV,
        client_secret_var: str = CLIENT_SECRET_ENV,
    ):
        self.client_id_var = client_id_var
        self.client_secret_var = client_secret_var

    def get_credentials(self) -> ClientCredentials:
        client_id = os.getenv(self.client_id_var, "")
        client_secret = os.getenv(self.client_secret_var, "")

        missing = [
            name
            for name, value in (
                (self.client_id_var, client_id),
                (self.client_secret_var, client_secret),
            )
            if not value
        ]
        if missing:
            raise AuthError(
                f"Missing credential environment variables: {', '.join(missing)}",
                context={"missing": missing},
            )

        logger.debug(
            "Loaded client credentials from environment",
            extra={"client_id": client_id},
        )
        return ClientCredentials(client_id, client_secret)


__all__ = [
    "ClientCredentials",
    "StaticCredentialProvider",
    "EnvCredentialProvider",
    "CLIENT_ID_ENV",
    "CLIENT_SECRET_ENV",
]
