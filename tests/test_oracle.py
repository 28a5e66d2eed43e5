"""
Tests for the shared compliance oracle and its HTTP client lifetime.
"""

import httpx
import pytest

from app.core.config import settings
from app.core.dependencies import get_compliance_oracle
from app.services.oracle import (
    HttpComplianceOracle, LocalComplianceOracle, close_oracle, get_oracle
)


@pytest.fixture
def remote_oracle_url(monkeypatch):
    monkeypatch.setattr(settings, "oracle_url", "http://oracle.internal")
    close_oracle()
    yield settings.oracle_url
    close_oracle()


class TestSharedOracle:
    """One oracle per process, closed on shutdown."""

    def test_instance_is_reused(self, remote_oracle_url):
        first = get_oracle()

        assert isinstance(first, HttpComplianceOracle)
        assert get_oracle() is first
        assert get_compliance_oracle() is first

    def test_close_releases_client(self, remote_oracle_url):
        first = get_oracle()

        close_oracle()

        assert first.client.is_closed
        second = get_oracle()
        assert second is not first
        assert not second.client.is_closed

    def test_local_oracle_without_url(self, monkeypatch):
        monkeypatch.setattr(settings, "oracle_url", "")
        close_oracle()

        assert isinstance(get_oracle(), LocalComplianceOracle)
        close_oracle()

    def test_injected_client_is_left_open(self):
        client = httpx.Client(base_url="http://oracle.internal")
        oracle = HttpComplianceOracle("http://oracle.internal", client=client)

        oracle.close()

        assert not client.is_closed
        client.close()
