import hashlib
from typing import Any, Dict, List

from azure.identity import DefaultAzureCredential
from azure.mgmt.resource import ResourceManagementClient
from azure.mgmt.security import SecurityCenter

from multicloud_compliance.config import ConnectorConfig
from multicloud_compliance.connectors.base import CloudConnector, dig, lookup_vocabulary
from multicloud_compliance.models import (
    CloudProvider,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
)

REQUIRED_TAGS_RULE = 'Required Resource Tags'

# Defender for Cloud assessment status.code -> canonical status
ASSESSMENT_STATUS = {
    'HEALTHY': ComplianceStatus.PASS,
    'UNHEALTHY': ComplianceStatus.FAIL,
    'NOTAPPLICABLE': ComplianceStatus.NOT_APPLICABLE,
}

# Assessment metadata severity -> canonical severity
ASSESSMENT_SEVERITY = {
    'HIGH': Severity.HIGH,
    'MEDIUM': Severity.MEDIUM,
    'LOW': Severity.LOW,
    'INFORMATIONAL': Severity.LOW,
}


def _assessment_key(raw: Dict[str, Any]) -> str:
    """Assessment name (a type GUID) plus a digest of the per-resource assessment id"""
    name = raw.get('name') or 'unknown'
    resource_path = raw.get('id')
    if not resource_path:
        return name
    digest = hashlib.sha1(resource_path.lower().encode('utf-8')).hexdigest()[:12]
    return f"{name}-{digest}"


def _as_dict(item) -> Dict[str, Any]:
    """Azure SDK models expose as_dict(); tests and caches may hand us dicts"""
    if isinstance(item, dict):
        return item
    return item.as_dict()


class AzureConnector(CloudConnector):
    """Microsoft Defender for Cloud + resource group policy connector"""

    provider = CloudProvider.AZURE
    REQUIRED_CREDENTIALS = ('subscription_id',)

    def __init__(self, tenant_id: str, environment_id: str, credentials: Dict[str, Any],
                 credential=None, resource_client=None, security_client=None,
                 required_tags: List[str] = None, **kwargs):
        super().__init__(tenant_id, environment_id, credentials, **kwargs)
        self.subscription_id = self._credentials['subscription_id']
        # Identity chain (managed identity, environment, CLI); no secret kept here
        self._credential = credential
        self._resource_client = resource_client
        self._security_client = security_client
        self.required_tags = required_tags or ConnectorConfig.get_azure_required_tags()

    # ========================================================================
    # CLIENTS
    # ========================================================================

    @property
    def credential(self):
        if self._credential is None:
            self._credential = DefaultAzureCredential()
        return self._credential

    @property
    def resource_client(self):
        if self._resource_client is None:
            self._resource_client = ResourceManagementClient(self.credential, self.subscription_id)
        return self._resource_client

    @property
    def security_client(self):
        if self._security_client is None:
            self._security_client = SecurityCenter(self.credential, self.subscription_id)
        return self._security_client

    # ========================================================================
    # PROVIDER CALLS
    # ========================================================================

    async def _test_connection(self) -> None:
        await self._call(self._first_resource_group)

    def _first_resource_group(self):
        # One page is enough to prove the identity can read the subscription
        return next(iter(self.resource_client.resource_groups.list()), None)

    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_assessments)

    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_resource_groups)

    def _list_assessments(self) -> List[Dict[str, Any]]:
        assessments = []
        for assessment in self.security_client.assessments.list(scope=f"/subscriptions/{self.subscription_id}"):
            assessments.append(_as_dict(assessment))
            if len(assessments) >= self.max_results:
                break
        return assessments

    def _list_resource_groups(self) -> List[Dict[str, Any]]:
        groups = []
        for group in self.resource_client.resource_groups.list():
            groups.append(_as_dict(group))
            if len(groups) >= self.max_results:
                break
        return groups

    # ========================================================================
    # NORMALIZATION
    # ========================================================================

    def _normalize_findings(self, raw_records: List[Dict[str, Any]], category: FindingCategory) -> List[ComplianceFinding]:
        if category == FindingCategory.SECURITY:
            return [self._normalize_assessment(raw) for raw in raw_records]

        findings = []
        for group in raw_records:
            finding = self._check_required_tags(group)
            if finding:
                findings.append(finding)
        return findings

    def _normalize_assessment(self, raw: Dict[str, Any]) -> ComplianceFinding:
        code = dig(raw, 'status.code')
        display_name = raw.get('display_name') or raw.get('name') or 'Unknown Assessment'
        return self._make_finding(
            finding_id=f"azure-assessment-{_assessment_key(raw)}",
            severity=self._assessment_severity(raw),
            status=lookup_vocabulary(ASSESSMENT_STATUS, code, ComplianceStatus.MANUAL),
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=dig(raw, 'resource_details.id') or dig(raw, 'resource_details.source') or raw.get('id'),
            rule_name=display_name,
            description=dig(raw, 'status.description') or display_name,
            remediation=(dig(raw, 'links.azure_portal_uri')
                         or self.mappings.remediation_for(display_name)),
            category=FindingCategory.SECURITY,
            discovered_at=dig(raw, 'status.first_evaluation_date')
        )

    @staticmethod
    def _assessment_severity(raw: Dict[str, Any]) -> Severity:
        declared = dig(raw, 'metadata.severity')
        if declared:
            return lookup_vocabulary(ASSESSMENT_SEVERITY, declared, Severity.MEDIUM)
        code = str(dig(raw, 'status.code', '')).upper()
        if code in ('HEALTHY', 'NOTAPPLICABLE'):
            return Severity.LOW
        return Severity.MEDIUM

    def _check_required_tags(self, group: Dict[str, Any]):
        tags = group.get('tags') or {}
        missing = [tag for tag in self.required_tags if not tags.get(tag)]
        if not missing:
            return None
        return self._make_finding(
            finding_id=f"azure-config-{group.get('name')}-required-tags",
            severity=Severity.MEDIUM,
            status=ComplianceStatus.FAIL,
            mapped_controls=self.mappings.controls_for(REQUIRED_TAGS_RULE),
            resource_id=group.get('id'),
            rule_name=REQUIRED_TAGS_RULE,
            description=f"Resource group missing required tags: {', '.join(missing)}",
            remediation=self.mappings.remediation_for(REQUIRED_TAGS_RULE),
            category=FindingCategory.CONFIGURATION
        )

    def _map_to_nist_controls(self, raw: Dict[str, Any]) -> List[str]:
        return self.mappings.controls_for(raw.get('display_name'), raw.get('name'))
