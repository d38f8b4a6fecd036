"""Tests for core.types module."""

from core.auth.credentials import ClientCredentials, StaticCredentialProvider
from core.types import CredentialProvider, ErrorCategory


class TestErrorCategory:
    def test_values(self):
        assert ErrorCategory.TRANSIENT.value == "transient"
        assert ErrorCategory.AUTH.value == "auth"
        assert ErrorCategory.PERMANENT.value == "permanent"
        assert ErrorCategory.UNKNOWN.value == "unknown"

    def test_all_members(self):
        expected = {"TRANSIENT", "AUTH", "PERMANENT", "UNKNOWN"}
        assert set(ErrorCategory.__members__.keys()) == expected

    def test_from_value(self):
        assert ErrorCategory("transient") is ErrorCategory.TRANSIENT


class TestCredentialProvider:
    def test_is_protocol(self):
        """CredentialProvider is a Protocol with a single method."""
        assert hasattr(CredentialProvider, "get_credentials")

    def test_static_provider_satisfies_protocol(self):
        provider: CredentialProvider = StaticCredentialProvider("id", "secret")
        assert isinstance(provider.get_credentials(), ClientCredentials)
