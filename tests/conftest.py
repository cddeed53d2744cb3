"""Shared fixtures: an in-memory connector and environment builders."""

import asyncio
from typing import Any, Dict, List

import pytest

from multicloud_compliance.connectors.base import CloudConnector
from multicloud_compliance.connectors.mapping import clear_mapping_cache
from multicloud_compliance.connectors.retry import RetryPolicy
from multicloud_compliance.models import (
    CloudEnvironment,
    CloudProvider,
    ComplianceFinding,
    ComplianceStatus,
    Severity,
)


class RecordingSleep:
    """Stands in for asyncio.sleep and remembers requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


class Rendezvous:
    """Releases callers only once `parties` of them are waiting at the same time."""

    def __init__(self, parties, timeout=1.0):
        self.parties = parties
        self.timeout = timeout
        self.arrived = 0
        self._released = None

    async def wait(self):
        if self._released is None:
            self._released = asyncio.Event()
        self.arrived += 1
        if self.arrived >= self.parties:
            self._released.set()
        await asyncio.wait_for(self._released.wait(), timeout=self.timeout)


class FakeConnector(CloudConnector):
    """Connector whose provider calls are scripted in memory."""

    provider = CloudProvider.AWS

    def __init__(
        self,
        tenant_id,
        environment_id,
        credentials,
        provider=None,
        healthy=True,
        security=None,
        configuration=None,
        fail_security=False,
        fail_configuration=False,
        rendezvous=None,
        **kwargs
    ):
        if provider is not None:
            self.provider = CloudProvider.parse(provider)
        kwargs.setdefault('retry_policy', RetryPolicy(max_retries=1, base_delay=0))
        super().__init__(tenant_id, environment_id, credentials, **kwargs)
        self.healthy = healthy
        self.security = security if security is not None else [{'id': 's1', 'rule': 'cloudtrail-enabled'}]
        self.configuration = configuration if configuration is not None else [{'id': 'c1', 'rule': 'unmapped'}]
        self.fail_security = fail_security
        self.fail_configuration = fail_configuration
        self.connection_attempts = 0
        self.rendezvous = rendezvous

    async def _meet(self):
        if self.rendezvous is not None:
            await self.rendezvous.wait()

    async def _test_connection(self) -> None:
        self.connection_attempts += 1
        await self._meet()
        if not self.healthy:
            raise ConnectionError("provider unreachable")

    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        await self._meet()
        if self.fail_security:
            raise RuntimeError("security api down")
        return list(self.security)

    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        await self._meet()
        if self.fail_configuration:
            raise RuntimeError("config api down")
        return list(self.configuration)

    def _normalize_findings(self, raw_records, category) -> List[ComplianceFinding]:
        return [
            self._make_finding(
                finding_id=f"fake-{record['id']}",
                severity=Severity.HIGH,
                status=ComplianceStatus.FAIL,
                mapped_controls=self._map_to_nist_controls(record),
                resource_id=record.get('resource'),
                rule_name=record.get('rule'),
                description=f"{record.get('rule')} failed",
                remediation=None,
                category=category
            )
            for record in raw_records
        ]

    def _map_to_nist_controls(self, raw) -> List[str]:
        return self.mappings.controls_for(raw.get('rule'))


def make_environment(env_id: str, provider='aws', **overrides) -> CloudEnvironment:
    data = {
        'id': env_id,
        'provider': provider,
        'name': f"{env_id} account",
        'region': 'us-east-1',
    }
    data.update(overrides)
    return CloudEnvironment(**data)


@pytest.fixture(autouse=True)
def fresh_mapping_cache():
    clear_mapping_cache()
    yield
    clear_mapping_cache()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_connector():
    return FakeConnector('tenant-1', 'env-1', {})


@pytest.fixture
def fake_factory():
    """
    Manager connector factory driven by per-environment behaviour.

    Usage: fake_factory.behaviours['env-b'] = {'healthy': False}
    """

    class Factory:
        def __init__(self):
            self.behaviours = {}
            self.created = []

        def __call__(self, environment, tenant_id, credentials):
            connector = FakeConnector(
                tenant_id,
                environment.id,
                credentials,
                provider=environment.provider,
                **self.behaviours.get(environment.id, {})
            )
            self.created.append(connector)
            return connector

    return Factory()
