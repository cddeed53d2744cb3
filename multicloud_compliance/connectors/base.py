import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from multicloud_compliance.config import ConnectorConfig
from multicloud_compliance.connectors.mapping import ControlMappingTable, load_control_mappings
from multicloud_compliance.connectors.retry import RetryPolicy
from multicloud_compliance.errors import CollectionError, MissingCredentialError, log_connector_error
from multicloud_compliance.models import (
    CloudProvider,
    ComplianceData,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
    utc_now_iso,
)

module_logger = logging.getLogger(__name__)


def dig(data: Any, path: str, default=None):
    """Read a dotted path ('status.code') out of nested dicts"""
    current = data
    for part in path.split('.'):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return default if current is None else current


def _timestamp(value) -> Optional[str]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def lookup_vocabulary(table: Dict[str, Any], value, default):
    """Case-insensitive lookup of a provider vocabulary word"""
    if value is None:
        return default
    return table.get(str(value).strip().upper(), default)


class CloudConnector(ABC):
    """
    Abstract base class for cloud connectors

    Subclasses talk to one provider's API and must turn whatever that provider
    returns into ComplianceFinding objects. Retry policy and logger are
    injected so connectors depend on those capabilities, not on globals.
    """

    provider: CloudProvider = None
    REQUIRED_CREDENTIALS: Tuple[str, ...] = ()

    def __init__(
        self,
        tenant_id: str,
        environment_id: str,
        credentials: Dict[str, Any],
        retry_policy: RetryPolicy = None,
        logger: logging.Logger = None,
        call_timeout: float = None,
        max_results: int = None,
        mappings: ControlMappingTable = None
    ):
        if self.provider is None:
            raise TypeError(f"{type(self).__name__} does not declare a provider")

        credentials = dict(credentials or {})
        missing = [key for key in self.REQUIRED_CREDENTIALS if not credentials.get(key)]
        if missing:
            raise MissingCredentialError(self.provider.value, missing)

        self.tenant_id = tenant_id
        self.environment_id = environment_id
        self._credentials = credentials
        self.retry_policy = retry_policy or RetryPolicy()
        self.logger = logger or module_logger
        self.call_timeout = call_timeout or ConnectorConfig.get_call_timeout()
        self.max_results = max_results or ConnectorConfig.get_max_results()
        self.mappings = mappings or load_control_mappings(self.provider)

    def __repr__(self):
        return (f"{type(self).__name__}(tenant_id={self.tenant_id!r}, "
                f"environment_id={self.environment_id!r})")

    # ========================================================================
    # PUBLIC CONTRACT
    # ========================================================================

    async def test_connection(self) -> bool:
        """Cheapest provider call that proves credentials and reachability"""
        try:
            await self.retry_policy.run(self._test_connection, operation_name=self._label('test_connection'))
            return True
        except Exception as e:
            self.handle_error('test_connection', e)
            return False

    async def collect_compliance_data(self) -> ComplianceData:
        """
        Collect security and configuration findings concurrently into a snapshot

        One failed sub-collection is logged and absorbed. If both fail this
        raises CollectionError, so an empty snapshot always means "collected
        and found nothing".
        """
        categories = (FindingCategory.SECURITY, FindingCategory.CONFIGURATION)
        results = await asyncio.gather(
            *(self._collect(category) for category in categories),
            return_exceptions=True
        )

        raw_data = {}
        findings: List[ComplianceFinding] = []
        errors = []
        for category, result in zip(categories, results):
            key = self._raw_key(category)
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                self.handle_error(self._operation_for(category), result)
                errors.append(result)
                raw_data[key] = []
                continue
            raw_records, category_findings = result
            raw_data[key] = raw_records
            findings.extend(category_findings)

        if len(errors) == len(categories):
            error = CollectionError(
                f"All compliance collections failed for {self.provider.value} "
                f"environment {self.environment_id}"
            )
            self.handle_error('collect_compliance_data', error)
            raise error from errors[-1]

        snapshot = ComplianceData.create(
            provider=self.provider,
            tenant_id=self.tenant_id,
            environment_id=self.environment_id,
            findings=findings,
            raw_data=raw_data
        )
        self.logger.info(
            f"Collected {len(snapshot.findings)} {self.provider.value} findings "
            f"for environment {self.environment_id}"
        )
        return snapshot

    async def get_security_findings(self) -> List[ComplianceFinding]:
        """Provider-native security posture findings; [] after exhausted retries"""
        try:
            _, findings = await self._collect(FindingCategory.SECURITY)
            return findings
        except Exception as e:
            self.handle_error('get_security_findings', e)
            return []

    async def get_configuration_compliance(self) -> List[ComplianceFinding]:
        """Provider-native configuration/policy findings; [] after exhausted retries"""
        try:
            _, findings = await self._collect(FindingCategory.CONFIGURATION)
            return findings
        except Exception as e:
            self.handle_error('get_configuration_compliance', e)
            return []

    # ========================================================================
    # PROVIDER-SPECIFIC HOOKS
    # ========================================================================

    @abstractmethod
    async def _test_connection(self) -> None:
        """Probe the provider; raise on failure"""

    @abstractmethod
    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        """Raw provider security findings as dicts"""

    @abstractmethod
    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        """Raw provider configuration/policy evaluations as dicts"""

    @abstractmethod
    def _normalize_findings(self, raw_records: List[Dict[str, Any]], category: FindingCategory) -> List[ComplianceFinding]:
        """Convert raw provider records to canonical findings"""

    @abstractmethod
    def _map_to_nist_controls(self, raw: Dict[str, Any]) -> List[str]:
        """NIST 800-53 controls for one raw record"""

    # ========================================================================
    # SHARED HELPERS
    # ========================================================================

    async def _collect(self, category: FindingCategory) -> Tuple[List[Dict[str, Any]], List[ComplianceFinding]]:
        fetch = (self._fetch_security_findings if category == FindingCategory.SECURITY
                 else self._fetch_configuration_compliance)
        raw_records = await self.retry_policy.run(fetch, operation_name=self._label(self._operation_for(category)))
        raw_records = raw_records[:self.max_results]
        return raw_records, self._normalize_findings(raw_records, category)

    async def _call(self, func, *args, **kwargs):
        """
        Run one blocking SDK call off the event loop under the call deadline

        A thread cannot be cancelled: on timeout the worker keeps running until
        the SDK returns, so connectors also pass call_timeout to their SDK
        client as a socket timeout where the SDK accepts one.
        """
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=self.call_timeout
        )

    def _make_finding(
        self,
        finding_id: str,
        severity: Severity,
        status: ComplianceStatus,
        mapped_controls: List[str],
        resource_id: Optional[str],
        rule_name: Optional[str],
        description: str,
        remediation: Optional[str],
        category: FindingCategory,
        discovered_at: Optional[str] = None
    ) -> ComplianceFinding:
        """Build a finding stamped with this connector's provider"""
        checked = utc_now_iso()
        return ComplianceFinding(
            id=finding_id,
            provider=self.provider,
            severity=severity,
            status=status,
            mapped_controls=mapped_controls,
            resource_id=resource_id,
            rule_name=rule_name,
            description=description,
            remediation=remediation,
            discovered_at=_timestamp(discovered_at) or checked,
            last_checked=checked,
            category=category
        )

    def handle_error(self, operation: str, error: BaseException) -> None:
        """Common error logging"""
        log_connector_error(
            self.logger,
            self.provider,
            operation,
            error,
            tenant_id=self.tenant_id,
            environment_id=self.environment_id
        )

    def _label(self, operation: str) -> str:
        return f"{self.provider.value}:{self.environment_id}:{operation}"

    @staticmethod
    def _operation_for(category: FindingCategory) -> str:
        if category == FindingCategory.SECURITY:
            return 'get_security_findings'
        return 'get_configuration_compliance'

    @staticmethod
    def _raw_key(category: FindingCategory) -> str:
        if category == FindingCategory.SECURITY:
            return 'security_findings'
        return 'configuration_compliance'
