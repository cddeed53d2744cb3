from typing import Any, Dict, List

import oci

from multicloud_compliance.connectors.base import CloudConnector, lookup_vocabulary
from multicloud_compliance.models import (
    CloudProvider,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
)

CONFIGURATION_DETECTOR = 'IAAS_CONFIGURATION_DETECTOR'

# Cloud Guard riskLevel -> canonical severity
RISK_LEVEL = {
    'CRITICAL': Severity.CRITICAL,
    'HIGH': Severity.HIGH,
    'MEDIUM': Severity.MEDIUM,
    'LOW': Severity.LOW,
    'MINOR': Severity.LOW,
}

# Cloud Guard problem lifecycle -> canonical status
LIFECYCLE_STATUS = {
    'ACTIVE': ComplianceStatus.FAIL,
    'OPEN': ComplianceStatus.FAIL,
    'RESOLVED': ComplianceStatus.PASS,
    'DISMISSED': ComplianceStatus.NOT_APPLICABLE,
    'DELETED': ComplianceStatus.NOT_APPLICABLE,
}

# Problem lifecycle -> policy-rule compliance state
LIFECYCLE_COMPLIANCE = {
    'ACTIVE': 'NON_COMPLIANT',
    'OPEN': 'NON_COMPLIANT',
    'RESOLVED': 'COMPLIANT',
    'DISMISSED': 'NOT_APPLICABLE',
    'DELETED': 'NOT_APPLICABLE',
}

# Compliance state -> (severity, status)
RULE_COMPLIANCE = {
    'COMPLIANT': (Severity.LOW, ComplianceStatus.PASS),
    'NON_COMPLIANT': (Severity.HIGH, ComplianceStatus.FAIL),
    'NOT_APPLICABLE': (Severity.LOW, ComplianceStatus.NOT_APPLICABLE),
    'INSUFFICIENT_DATA': (Severity.MEDIUM, ComplianceStatus.MANUAL),
}


def _as_dict(item) -> Dict[str, Any]:
    if isinstance(item, dict):
        return item
    return oci.util.to_dict(item)


def _lifecycle(raw: Dict[str, Any]):
    # lifecycle_detail (OPEN/RESOLVED/DISMISSED/DELETED) is more precise than
    # lifecycle_state (ACTIVE/INACTIVE)
    return raw.get('lifecycle_detail') or raw.get('lifecycle_state')


class OCIConnector(CloudConnector):
    """Oracle Cloud Guard connector"""

    provider = CloudProvider.ORACLE
    REQUIRED_CREDENTIALS = ('tenancy', 'user', 'fingerprint', 'private_key', 'region', 'compartment_id')

    def __init__(self, tenant_id: str, environment_id: str, credentials: Dict[str, Any],
                 identity_client=None, cloud_guard_client=None, **kwargs):
        super().__init__(tenant_id, environment_id, credentials, **kwargs)
        self.region = self._credentials['region']
        self.compartment_id = self._credentials['compartment_id']
        self._identity_client = identity_client
        self._cloud_guard_client = cloud_guard_client

    # ========================================================================
    # CLIENTS
    # ========================================================================

    def _sdk_config(self) -> Dict[str, str]:
        return {
            'tenancy': self._credentials['tenancy'],
            'user': self._credentials['user'],
            'fingerprint': self._credentials['fingerprint'],
            'key_content': self._credentials['private_key'],
            'region': self.region,
        }

    def _timeouts(self):
        # (connect, read) socket timeouts for the SDK's HTTP session
        return (self.call_timeout, self.call_timeout)

    @property
    def identity_client(self):
        if self._identity_client is None:
            self._identity_client = oci.identity.IdentityClient(self._sdk_config(), timeout=self._timeouts())
        return self._identity_client

    @property
    def cloud_guard_client(self):
        if self._cloud_guard_client is None:
            self._cloud_guard_client = oci.cloud_guard.CloudGuardClient(self._sdk_config(), timeout=self._timeouts())
        return self._cloud_guard_client

    # ========================================================================
    # PROVIDER CALLS
    # ========================================================================

    async def _test_connection(self) -> None:
        await self._call(self.identity_client.get_user, self._credentials['user'])

    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_problems, exclude_detector=CONFIGURATION_DETECTOR)

    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        problems = await self._call(self._list_problems, CONFIGURATION_DETECTOR)
        return [self._rule_evaluation(p) for p in problems]

    def _list_problems(self, detector_type: str = None, exclude_detector: str = None) -> List[Dict[str, Any]]:
        """Page through Cloud Guard problems; the result cap counts only kept problems"""
        kwargs = {
            'compartment_id_in_subtree': True,
            'access_level': 'ACCESSIBLE',
        }
        if detector_type:
            kwargs['detector_type'] = detector_type

        problems = []
        page = None
        while True:
            response = self.cloud_guard_client.list_problems(self.compartment_id, page=page, **kwargs)
            for item in response.data.items:
                problem = _as_dict(item)
                if exclude_detector and problem.get('detector_id') == exclude_detector:
                    continue
                problems.append(problem)
            page = response.next_page
            if not page or len(problems) >= self.max_results:
                return problems

    @staticmethod
    def _rule_evaluation(problem: Dict[str, Any]) -> Dict[str, Any]:
        """Configuration-detector problem -> policy-rule evaluation record"""
        lifecycle = str(_lifecycle(problem) or '').upper()
        return {
            'id': problem.get('id'),
            'rule': problem.get('detector_rule_id'),
            'resource_id': problem.get('resource_id'),
            'resource_type': problem.get('resource_type'),
            'compliance_state': LIFECYCLE_COMPLIANCE.get(lifecycle, 'INSUFFICIENT_DATA'),
            'message': problem.get('description') or problem.get('resource_name'),
            'time_first_detected': problem.get('time_first_detected'),
        }

    # ========================================================================
    # NORMALIZATION
    # ========================================================================

    def _normalize_findings(self, raw_records: List[Dict[str, Any]], category: FindingCategory) -> List[ComplianceFinding]:
        if category == FindingCategory.SECURITY:
            return [self._normalize_problem(raw) for raw in raw_records]
        return [self._normalize_rule_evaluation(raw) for raw in raw_records]

    def _normalize_problem(self, raw: Dict[str, Any]) -> ComplianceFinding:
        rule = raw.get('detector_rule_id')
        return self._make_finding(
            finding_id=f"oci-problem-{raw.get('id')}",
            severity=lookup_vocabulary(RISK_LEVEL, raw.get('risk_level'), Severity.MEDIUM),
            status=lookup_vocabulary(LIFECYCLE_STATUS, _lifecycle(raw), ComplianceStatus.MANUAL),
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=raw.get('resource_id'),
            rule_name=rule,
            description=raw.get('description') or f"Cloud Guard problem {rule} on {raw.get('resource_name')}",
            remediation=raw.get('recommendation') or self.mappings.remediation_for(rule),
            category=FindingCategory.SECURITY,
            discovered_at=raw.get('time_first_detected')
        )

    def _normalize_rule_evaluation(self, raw: Dict[str, Any]) -> ComplianceFinding:
        rule = raw.get('rule')
        severity, status = lookup_vocabulary(
            RULE_COMPLIANCE, raw.get('compliance_state'), (Severity.MEDIUM, ComplianceStatus.MANUAL)
        )
        return self._make_finding(
            finding_id=f"oci-config-{raw.get('id')}",
            severity=severity,
            status=status,
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=raw.get('resource_id'),
            rule_name=rule,
            description=raw.get('message') or f"{rule} is {raw.get('compliance_state')}",
            remediation=self.mappings.remediation_for(rule),
            category=FindingCategory.CONFIGURATION,
            discovered_at=raw.get('time_first_detected')
        )

    def _map_to_nist_controls(self, raw: Dict[str, Any]) -> List[str]:
        return self.mappings.controls_for(raw.get('detector_rule_id'), raw.get('rule'), raw.get('title'))
