"""
Cloud Connector Manager
Owns the live connectors of one tenant, keyed by environment id, and fans
collection and health checks out across them
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from multicloud_compliance.connectors.aws_connector import AWSConnector
from multicloud_compliance.connectors.azure_connector import AzureConnector
from multicloud_compliance.connectors.base import CloudConnector
from multicloud_compliance.connectors.gcp_connector import GCPConnector
from multicloud_compliance.connectors.oci_connector import OCIConnector
from multicloud_compliance.errors import UnsupportedProviderError
from multicloud_compliance.models import (
    CloudConnectorConfig,
    CloudEnvironment,
    CloudProvider,
    ComplianceData,
)

logger = logging.getLogger(__name__)

CONNECTOR_CLASSES = {
    CloudProvider.AZURE: AzureConnector,
    CloudProvider.AWS: AWSConnector,
    CloudProvider.GCP: GCPConnector,
    CloudProvider.ORACLE: OCIConnector,
}


class ConnectorState(str, Enum):
    """Lifecycle of one environment inside a manager"""
    UNREGISTERED = "unregistered"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    UNHEALTHY = "unhealthy"
    REMOVED = "removed"


def create_connector(
    environment: CloudEnvironment,
    tenant_id: str,
    credentials: Dict[str, Any],
    **kwargs
) -> CloudConnector:
    """Build the provider connector for an environment"""
    provider = CloudProvider.parse(environment.provider)
    connector_class = CONNECTOR_CLASSES.get(provider)
    if connector_class is None:
        raise UnsupportedProviderError(f"Unsupported cloud provider: {environment.provider}")
    return connector_class(tenant_id, environment.id, credentials, **kwargs)


class CloudConnectorManager:
    """
    Per-tenant registry of live connectors

    Run one manager per tenant: the registry is keyed by environment id only,
    so sharing a manager across tenants would mix their credentials.
    """

    def __init__(
        self,
        tenant_id: str,
        connector_factory: Callable[..., CloudConnector] = create_connector
    ):
        self.tenant_id = tenant_id
        self.connector_factory = connector_factory
        self._connectors: Dict[str, CloudConnector] = {}
        self._states: Dict[str, ConnectorState] = {}
        self._configs: Dict[str, CloudConnectorConfig] = {}

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    async def initialize_connector(self, environment: CloudEnvironment, credentials: Dict[str, Any]) -> bool:
        """
        Construct and connectivity-test a connector, registering it on success

        A failed test leaves any connector already registered for the
        environment untouched. Unsupported providers and missing credential
        fields raise, since they are caller bugs.
        """
        connector = self.connector_factory(environment, self.tenant_id, credentials)

        previous_state = self._states.get(environment.id)
        if environment.id not in self._connectors:
            self._states[environment.id] = ConnectorState.INITIALIZING

        try:
            connected = await connector.test_connection()
        except Exception as e:
            logger.error(f"Connection test raised for {environment.provider.value} environment {environment.name}: {e}")
            connected = False

        if not connected:
            logger.error(f"Failed to initialize connector for {environment.provider.value} environment: {environment.name}")
            if environment.id in self._connectors:
                self._states[environment.id] = previous_state
            else:
                self._states.pop(environment.id, None)
            return False

        self._connectors[environment.id] = connector
        self._states[environment.id] = ConnectorState.ACTIVE
        logger.info(f"Successfully initialized connector for {environment.provider.value} environment: {environment.name}")
        return True

    def remove_connector(self, environment_id: str) -> None:
        """Drop a connector; removing an unknown id is a no-op"""
        if self._connectors.pop(environment_id, None) is not None:
            self._states[environment_id] = ConnectorState.REMOVED
            logger.info(f"Removed connector for environment {environment_id}")
        self._configs.pop(environment_id, None)

    def get_active_connectors(self) -> List[str]:
        return list(self._connectors.keys())

    def get_connector(self, environment_id: str) -> Optional[CloudConnector]:
        return self._connectors.get(environment_id)

    def get_connector_state(self, environment_id: str) -> ConnectorState:
        return self._states.get(environment_id, ConnectorState.UNREGISTERED)

    # ========================================================================
    # DELEGATED OPERATIONS
    # ========================================================================

    async def test_connection(self, environment_id: str) -> bool:
        connector = self._connectors.get(environment_id)
        if connector is None:
            return False

        try:
            return await connector.test_connection()
        except Exception as e:
            logger.error(f"Connection test failed for environment {environment_id}: {e}")
            return False

    async def collect_compliance_data(self, environment_id: str) -> Optional[ComplianceData]:
        """One environment's snapshot, or None if it cannot be collected"""
        connector = self._connectors.get(environment_id)
        if connector is None:
            logger.warning(f"No connector found for environment: {environment_id}")
            return None

        try:
            return await connector.collect_compliance_data()
        except Exception as e:
            logger.error(f"Failed to collect compliance data for environment {environment_id}: {e}")
            return None

    # ========================================================================
    # FAN-OUT
    # ========================================================================

    async def _gather(self, environment_ids: List[str], operation) -> List[Any]:
        """Run operation per environment concurrently; wait for all to settle"""
        results = await asyncio.gather(
            *(operation(environment_id) for environment_id in environment_ids),
            return_exceptions=True
        )
        for environment_id, result in zip(environment_ids, results):
            if isinstance(result, BaseException) and not isinstance(result, Exception):
                raise result
            if isinstance(result, Exception):
                logger.error(f"Operation failed for environment {environment_id}: {result}")
        return results

    async def collect_all_compliance_data(self) -> List[ComplianceData]:
        """Snapshots from every enabled environment; failures are logged and dropped"""
        environment_ids = [
            env_id for env_id in self._connectors
            if self._configs.get(env_id) is None or self._configs[env_id].is_enabled
        ]
        results = await self._gather(environment_ids, self.collect_compliance_data)
        snapshots = [r for r in results if isinstance(r, ComplianceData)]
        logger.info(f"Collected {len(snapshots)}/{len(environment_ids)} environment snapshots for tenant {self.tenant_id}")
        return snapshots

    async def sync_environments(self, environment_ids: List[str]) -> Dict[str, List]:
        """Targeted sync that reports which environment ids failed"""
        results = await self._gather(list(environment_ids), self.collect_compliance_data)
        success, failed = [], []
        for environment_id, result in zip(environment_ids, results):
            if isinstance(result, ComplianceData):
                success.append(result)
            else:
                failed.append(environment_id)
        if failed:
            logger.warning(f"Sync failed for environments: {', '.join(failed)}")
        return {'success': success, 'failed': failed}

    async def health_check(self) -> Dict[str, Any]:
        environment_ids = list(self._connectors.keys())
        results = await self._gather(environment_ids, self.test_connection)

        healthy, unhealthy = [], []
        for environment_id, result in zip(environment_ids, results):
            if result is True:
                healthy.append(environment_id)
                state = ConnectorState.ACTIVE
            else:
                unhealthy.append(environment_id)
                state = ConnectorState.UNHEALTHY
            if environment_id in self._connectors:
                self._states[environment_id] = state

        return {
            'healthy': healthy,
            'unhealthy': unhealthy,
            'total': len(environment_ids)
        }

    # ========================================================================
    # STATUS & SETTINGS
    # ========================================================================

    def get_connector_stats(self) -> Dict[str, Any]:
        by_provider = {provider.value: 0 for provider in CloudProvider}
        for connector in self._connectors.values():
            by_provider[connector.provider.value] += 1
        return {
            'total_connectors': len(self._connectors),
            'connectors_by_provider': by_provider,
            'active_environments': self.get_active_connectors()
        }

    def update_connector_configs(self, configs: List[CloudConnectorConfig]) -> Dict[str, List[str]]:
        """Attach sync settings to registered environments"""
        updated, failed = [], []
        for config in configs:
            connector = self._connectors.get(config.environment_id)
            if connector is None or connector.provider != config.provider:
                logger.warning(f"Cannot update config for environment {config.environment_id}")
                failed.append(config.environment_id)
                continue
            self._configs[config.environment_id] = config
            updated.append(config.environment_id)
        return {'updated': updated, 'failed': failed}

    def get_connector_config(self, environment_id: str) -> Optional[CloudConnectorConfig]:
        return self._configs.get(environment_id)

    def dispose(self) -> None:
        """Drop every connector"""
        self._connectors.clear()
        self._configs.clear()
        self._states.clear()
        logger.info(f"Disposed cloud connector manager for tenant: {self.tenant_id}")
