import re
import threading
from typing import Any, Dict, List

import boto3
from botocore.config import Config

from multicloud_compliance.connectors.base import CloudConnector, dig, lookup_vocabulary
from multicloud_compliance.models import (
    CloudProvider,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
)

# Security Hub severity label -> canonical severity
SECURITY_HUB_SEVERITY = {
    'CRITICAL': Severity.CRITICAL,
    'HIGH': Severity.HIGH,
    'MEDIUM': Severity.MEDIUM,
    'LOW': Severity.LOW,
    'INFORMATIONAL': Severity.LOW,
}

# Security Hub Compliance.Status -> canonical status
SECURITY_HUB_STATUS = {
    'PASSED': ComplianceStatus.PASS,
    'FAILED': ComplianceStatus.FAIL,
    'WARNING': ComplianceStatus.MANUAL,
    'NOT_AVAILABLE': ComplianceStatus.NOT_APPLICABLE,
}

# AWS Config complianceType -> (severity, status)
CONFIG_COMPLIANCE = {
    'COMPLIANT': (Severity.LOW, ComplianceStatus.PASS),
    'NON_COMPLIANT': (Severity.HIGH, ComplianceStatus.FAIL),
    'NOT_APPLICABLE': (Severity.LOW, ComplianceStatus.NOT_APPLICABLE),
    'INSUFFICIENT_DATA': (Severity.MEDIUM, ComplianceStatus.MANUAL),
}

NIST_REQUIREMENT = re.compile(r'^NIST[.\s]?800-53(?:\.r\d+)?\s+([A-Z]{2}-\d+)', re.IGNORECASE)


class AWSConnector(CloudConnector):
    """AWS Security Hub + AWS Config connector"""

    provider = CloudProvider.AWS
    REQUIRED_CREDENTIALS = ('access_key_id', 'secret_access_key', 'region')

    def __init__(self, tenant_id: str, environment_id: str, credentials: Dict[str, Any],
                 session=None, **kwargs):
        super().__init__(tenant_id, environment_id, credentials, **kwargs)
        self.region = self._credentials['region']
        self._session = session
        self._clients = {}
        # Guards lazy session and client creation; boto3 sessions are not thread-safe
        self._client_lock = threading.Lock()

    # ========================================================================
    # CLIENTS
    # ========================================================================

    def _get_session(self):
        if self._session is None:
            self._session = boto3.Session(
                aws_access_key_id=self._credentials['access_key_id'],
                aws_secret_access_key=self._credentials['secret_access_key'],
                aws_session_token=self._credentials.get('session_token'),
                region_name=self.region
            )
        return self._session

    def _client(self, service: str):
        with self._client_lock:
            if service not in self._clients:
                self._clients[service] = self._get_session().client(
                    service,
                    region_name=self.region,
                    config=Config(
                        connect_timeout=self.call_timeout,
                        read_timeout=self.call_timeout,
                        retries={'max_attempts': 1}
                    )
                )
            return self._clients[service]

    # ========================================================================
    # PROVIDER CALLS
    # ========================================================================

    async def _test_connection(self) -> None:
        identity = await self._call(self._caller_identity)
        self.logger.debug(f"AWS connection verified for account {identity.get('Account')}")

    def _caller_identity(self):
        return self._client('sts').get_caller_identity()

    async def _fetch_security_findings(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_security_hub_findings)

    async def _fetch_configuration_compliance(self) -> List[Dict[str, Any]]:
        return await self._call(self._list_config_evaluations)

    def _list_security_hub_findings(self) -> List[Dict[str, Any]]:
        paginator = self._client('securityhub').get_paginator('get_findings')
        findings = []
        for page in paginator.paginate(
            Filters={'RecordState': [{'Value': 'ACTIVE', 'Comparison': 'EQUALS'}]},
            PaginationConfig={'MaxItems': self.max_results}
        ):
            findings.extend(page.get('Findings', []))
            if len(findings) >= self.max_results:
                break
        return findings

    def _list_config_evaluations(self) -> List[Dict[str, Any]]:
        config = self._client('config')
        evaluations = []
        for rules_page in config.get_paginator('describe_config_rules').paginate():
            for rule in rules_page.get('ConfigRules', []):
                details = config.get_paginator('get_compliance_details_by_config_rule')
                for page in details.paginate(ConfigRuleName=rule['ConfigRuleName']):
                    evaluations.extend(page.get('EvaluationResults', []))
                    if len(evaluations) >= self.max_results:
                        return evaluations
        return evaluations

    # ========================================================================
    # NORMALIZATION
    # ========================================================================

    def _normalize_findings(self, raw_records: List[Dict[str, Any]], category: FindingCategory) -> List[ComplianceFinding]:
        if category == FindingCategory.SECURITY:
            return [self._normalize_security_hub_finding(raw) for raw in raw_records]
        return [self._normalize_config_evaluation(raw) for raw in raw_records]

    def _normalize_security_hub_finding(self, raw: Dict[str, Any]) -> ComplianceFinding:
        title = raw.get('Title')
        resources = raw.get('Resources') or [{}]
        return self._make_finding(
            finding_id=f"aws-securityhub-{raw.get('Id')}",
            severity=lookup_vocabulary(SECURITY_HUB_SEVERITY, dig(raw, 'Severity.Label'), Severity.MEDIUM),
            status=lookup_vocabulary(SECURITY_HUB_STATUS, dig(raw, 'Compliance.Status'), ComplianceStatus.MANUAL),
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=resources[0].get('Id'),
            rule_name=title,
            description=raw.get('Description') or title or '',
            remediation=dig(raw, 'Remediation.Recommendation.Text') or self.mappings.remediation_for(title),
            category=FindingCategory.SECURITY,
            discovered_at=raw.get('FirstObservedAt') or raw.get('CreatedAt')
        )

    def _normalize_config_evaluation(self, raw: Dict[str, Any]) -> ComplianceFinding:
        qualifier = dig(raw, 'EvaluationResultIdentifier.EvaluationResultQualifier', {})
        rule_name = qualifier.get('ConfigRuleName')
        resource_id = qualifier.get('ResourceId')
        compliance_type = raw.get('ComplianceType')
        severity, status = lookup_vocabulary(
            CONFIG_COMPLIANCE, compliance_type, (Severity.MEDIUM, ComplianceStatus.MANUAL)
        )
        return self._make_finding(
            finding_id=f"aws-config-{rule_name}-{resource_id}",
            severity=severity,
            status=status,
            mapped_controls=self._map_to_nist_controls(raw),
            resource_id=resource_id,
            rule_name=rule_name,
            description=raw.get('Annotation') or f"{qualifier.get('ResourceType', 'Resource')} is {compliance_type}",
            remediation=self.mappings.remediation_for(rule_name),
            category=FindingCategory.CONFIGURATION,
            discovered_at=raw.get('ResultRecordedTime')
        )

    def _map_to_nist_controls(self, raw: Dict[str, Any]) -> List[str]:
        rule_name = (raw.get('Title')
                     or dig(raw, 'EvaluationResultIdentifier.EvaluationResultQualifier.ConfigRuleName')
                     or raw.get('GeneratorId'))
        if self.mappings.has_controls(rule_name, raw.get('GeneratorId')):
            return self.mappings.controls_for(rule_name, raw.get('GeneratorId'))

        # Security Hub findings may already carry NIST requirements
        related = []
        for requirement in dig(raw, 'Compliance.RelatedRequirements', []):
            match = NIST_REQUIREMENT.match(requirement)
            if match:
                related.append(match.group(1).upper())
        return related or self.mappings.controls_for()
