"""
Authentication module.

Provides the client credentials handed to the remote table service
during the stream handshake.

Components:
    - ClientCredentials: id/secret pair with a redacted repr
    - StaticCredentialProvider: fixed credentials
    - EnvCredentialProvider: credentials read from the environment
"""

from .credentials import (
    CLIENT_ID_ENV,
    CLIENT_SECRET_ENV,
    ClientCredentials,
    EnvCredentialProvider,
    StaticCredentialProvider,
)

__all__ = [
    "ClientCredentials",
    "StaticCredentialProvider",
    "EnvCredentialProvider",
    "CLIENT_ID_ENV",
    "CLIENT_SECRET_ENV",
]
