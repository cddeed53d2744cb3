import json
from typing import Any, Dict, List, Optional

from google.cloud import asset_v1, securitycenter
from google.oauth2 import service_account

from multicloud_compliance.connectors.base import CloudConnector, dig, lookup_vocabulary
from multicloud_compliance.errors import MissingCredentialError
from multicloud_compliance.models import (
    CloudProvider,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
)

SCOPES = ['https://www.googleapis.com/auth/cloud-platform']

# Security Command Center severity -> canonical severity
SCC_SEVERITY = {
    'CRITICAL': Severity.CRITICAL,
    'HIGH': Severity.HIGH,
    'MEDIUM': Severity.MEDIUM,
    'LOW': Severity.LOW,
    'MINIMAL': Severity.LOW,
}

# Security Command Center state -> canonical status
SCC_STATE = {
    'ACTIVE': ComplianceStatus.FAIL,
    'INACTIVE': ComplianceStatus.PASS,
    'MUTED': ComplianceStatus.NOT_APPLICABLE,
}


def _message_to_dict(message) -> Dict[str, Any]:
    """proto-plus message -> dict with enum names rather than integers"""
    if isinstance(message, dict):
        return message
    return type(message).to_dict(message, use_integers_for_enums=False)


def _short_name(resource_name: Optional[str]) -> str:
    return (resource_name or '').rstrip('/').split('/')[-1] or 'unknown'


class GCPConnector(CloudConnector):
    """Security Command Center + Cloud Asset Inventory connector"""

    provider = CloudProvider.GCP
    REQUIRED_CREDENTIALS = ('project_id',)

    def __init__(self, tenant_id: str, environment_id: str, credentials: Dict[str, Any],
                 scc_client=None, asset_client=None, **kwargs):
        super().__init__(tenant_id, environment_id, credentials, **kwargs)
        if not (self._credentials.get('key_file') or self._credentials.get('credentials_info')):
            raise MissingCredentialError(self.provider.value, ['key_file or credentials_info'])

        self.project_id = self._credentials['project_id']
        self._scc_client = scc_client
        self._asset_client = asset_client
        self._google_credentials = None

    # ========================================================================
    # CLIENTS
    # ========================================================================

    @property
    def google_credentials(self):
        if self._google_credentials is None:
            info = self._credentials.get('credentials_info')
            if info:
                if isinstance(info, str):
                    info = json.loads(info)
                self._google_credentials = service_account.Credentials.from_service_account_info(
                    info, scopes=SCOPES
                )
            else:
                self._google_credentials = service_account.Credentials.from_service_account_file(
                    self._credentials['key_file'], scopes=SCOPES
                )
        return self._google_credentials

    @property
    def scc_client(self):
        if self._scc_client is None:
            self._scc_client = securitycenter.SecurityCenterClient(credentials=self.google_credentials)
        return self._scc_client

    @property
    def asset_client(self):
        if self._asset_client is None:
            self._asset_client = asset_v1.AssetServiceClient(credentials=self.google_credentials)
        return self._asset_client

    @property
    def asset_policies(self) -> List[Dict[str, Any]]:
        return list(self.mappings.extras.get('asset_policies', []))

    # ========================================================================
    # PROVIDER CALLS
    # ========================================================================

    async def _test_connection(self) -> None:
        await self._call(self._first_source)

    def _first_source(self):
        pager = self.scc_client.list_sources(request={'parent': f"projects/{self.project_id}", 'page_size': 1})
        return next(iter(pager), None)

    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_scc_findings)

    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        assets = await self._call(self._list_assets)
        return self._evaluate_asset_policies(assets)

    def _list_scc_findings(self) -> List[Dict[str, Any]]:
        findings = []
        pager = self.scc_client.list_findings(request={'parent': f"projects/{self.project_id}/sources/-"})
        for result in pager:
            findings.append(_message_to_dict(result.finding))
            if len(findings) >= self.max_results:
                break
        return findings

    def _list_assets(self) -> List[Dict[str, Any]]:
        asset_types = sorted({policy['asset_type'] for policy in self.asset_policies})
        if not asset_types:
            return []
        assets = []
        pager = self.asset_client.list_assets(request={
            'parent': f"projects/{self.project_id}",
            'asset_types': asset_types,
            'content_type': asset_v1.ContentType.RESOURCE,
        })
        for asset in pager:
            assets.append(_message_to_dict(asset))
            if len(assets) >= self.max_results:
                break
        return assets

    # ========================================================================
    # ASSET POLICY EVALUATION
    # ========================================================================

    def _evaluate_asset_policies(self, assets: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Asset inventory -> policy violation records, one per failing policy"""
        violations = []
        policies = self.asset_policies
        for asset in assets:
            asset_type = asset.get('asset_type')
            data = dig(asset, 'resource.data', {})
            for policy in policies:
                if policy.get('asset_type') != asset_type:
                    continue
                value = dig(data, policy['field'])
                if policy.get('present'):
                    compliant = value is not None
                else:
                    compliant = value in policy.get('expected', [])
                if not compliant:
                    violations.append({
                        'asset_type': asset_type,
                        'name': asset.get('name'),
                        'field': policy['field'],
                        'observed': value,
                        'violation': policy.get('violation', f"{policy['field']} is not compliant"),
                        'severity': policy.get('severity', 'MEDIUM'),
                    })
        return violations

    # ========================================================================
    # NORMALIZATION
    # ========================================================================

    def _normalize_findings(self, raw_records: List[Dict[str, Any]], category: FindingCategory) -> List[ComplianceFinding]:
        if category == FindingCategory.SECURITY:
            return [self._normalize_scc_finding(raw) for raw in raw_records]
        return [self._normalize_violation(raw) for raw in raw_records]

    def _normalize_scc_finding(self, raw: Dict[str, Any]) -> ComplianceFinding:
        category = raw.get('category')
        state = 'MUTED' if str(raw.get('mute', '')).upper() == 'MUTED' else raw.get('state')
        return self._make_finding(
            finding_id=f"gcp-scc-{_short_name(raw.get('name'))}",
            severity=lookup_vocabulary(SCC_SEVERITY, raw.get('severity'), Severity.MEDIUM),
            status=lookup_vocabulary(SCC_STATE, state, ComplianceStatus.MANUAL),
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=raw.get('resource_name'),
            rule_name=category,
            description=raw.get('description') or category or '',
            remediation=raw.get('next_steps') or self.mappings.remediation_for(category),
            category=FindingCategory.SECURITY,
            discovered_at=raw.get('create_time') or raw.get('event_time')
        )

    def _normalize_violation(self, raw: Dict[str, Any]) -> ComplianceFinding:
        asset_type = raw.get('asset_type')
        return self._make_finding(
            finding_id=f"gcp-config-{_short_name(raw.get('name'))}-{raw.get('field')}",
            severity=lookup_vocabulary(SCC_SEVERITY, raw.get('severity'), Severity.MEDIUM),
            status=ComplianceStatus.FAIL,
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=raw.get('name'),
            rule_name=asset_type,
            description=raw.get('violation') or '',
            remediation=self.mappings.remediation_for(asset_type),
            category=FindingCategory.CONFIGURATION
        )

    def _map_to_nist_controls(self, raw: Dict[str, Any]) -> List[str]:
        return self.mappings.controls_for(raw.get('category'), raw.get('asset_type'))
