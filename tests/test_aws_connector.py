"""Unit tests for the AWS Security Hub / Config connector."""

import threading
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from multicloud_compliance.connectors.aws_connector import AWSConnector
from multicloud_compliance.connectors.retry import RetryPolicy
from multicloud_compliance.models import ComplianceStatus, FindingCategory, Severity

CREDENTIALS = {
    'access_key_id': 'AKIAEXAMPLE',
    'secret_access_key': 'secret',
    'region': 'us-east-1',
}

SECURITY_HUB_FINDING = {
    'Id': 'arn:aws:securityhub:finding/1',
    'Title': 'S3 bucket should block public access',
    'Description': 'Bucket allows public reads',
    'Severity': {'Label': 'HIGH'},
    'Compliance': {'Status': 'FAILED'},
    'Resources': [{'Id': 'arn:aws:s3:::logs'}],
    'CreatedAt': '2024-03-01T00:00:00Z',
}

CONFIG_EVALUATION = {
    'EvaluationResultIdentifier': {
        'EvaluationResultQualifier': {
            'ConfigRuleName': 'encrypted-volumes',
            'ResourceType': 'AWS::EC2::Volume',
            'ResourceId': 'vol-123',
        }
    },
    'ComplianceType': 'NON_COMPLIANT',
    'ResultRecordedTime': datetime(2024, 3, 2, tzinfo=timezone.utc),
}


def make_session(findings=None, evaluations=None):
    securityhub = MagicMock()
    securityhub.get_paginator.return_value.paginate.return_value = [{'Findings': findings or []}]

    config = MagicMock()
    rules = MagicMock()
    rules.paginate.return_value = [{'ConfigRules': [{'ConfigRuleName': 'encrypted-volumes'}]}]
    details = MagicMock()
    details.paginate.return_value = [{'EvaluationResults': evaluations or []}]
    config.get_paginator.side_effect = lambda name: rules if name == 'describe_config_rules' else details

    sts = MagicMock()
    sts.get_caller_identity.return_value = {'Account': '123456789012'}

    clients = {'securityhub': securityhub, 'config': config, 'sts': sts}
    session = MagicMock()
    session.client.side_effect = lambda service, **kwargs: clients[service]
    return session, clients


def make_connector(session):
    return AWSConnector('tenant-1', 'env-aws', CREDENTIALS, session=session,
                        retry_policy=RetryPolicy(max_retries=1, base_delay=0))


@pytest.mark.asyncio
async def test_connection_uses_sts():
    session, clients = make_session()

    assert await make_connector(session).test_connection() is True
    clients['sts'].get_caller_identity.assert_called_once()


@pytest.mark.asyncio
async def test_security_hub_finding_normalized():
    session, clients = make_session(findings=[SECURITY_HUB_FINDING])

    findings = await make_connector(session).get_security_findings()

    finding = findings[0]
    assert finding.id == 'aws-securityhub-arn:aws:securityhub:finding/1'
    assert finding.severity is Severity.HIGH
    assert finding.status is ComplianceStatus.FAIL
    assert finding.mapped_controls == ['AC-3', 'SC-7']
    assert finding.resource_id == 'arn:aws:s3:::logs'
    assert finding.discovered_at == '2024-03-01T00:00:00Z'
    kwargs = clients['securityhub'].get_paginator.return_value.paginate.call_args.kwargs
    assert kwargs['Filters']['RecordState'][0]['Value'] == 'ACTIVE'


@pytest.mark.asyncio
async def test_related_nist_requirements_used_when_title_unmapped():
    raw = dict(SECURITY_HUB_FINDING, Title='Something new',
               Compliance={'Status': 'WARNING', 'RelatedRequirements': ['NIST.800-53.r5 AC-6', 'PCI DSS 7.2']},
               Severity={'Label': 'INFORMATIONAL'})
    session, _ = make_session(findings=[raw])

    finding = (await make_connector(session).get_security_findings())[0]

    assert finding.mapped_controls == ['AC-6']
    assert finding.severity is Severity.LOW
    assert finding.status is ComplianceStatus.MANUAL


@pytest.mark.asyncio
async def test_config_evaluation_normalized():
    session, _ = make_session(evaluations=[CONFIG_EVALUATION])

    findings = await make_connector(session).get_configuration_compliance()

    finding = findings[0]
    assert finding.id == 'aws-config-encrypted-volumes-vol-123'
    assert finding.severity is Severity.HIGH
    assert finding.status is ComplianceStatus.FAIL
    assert finding.mapped_controls == ['SC-28']
    assert finding.category is FindingCategory.CONFIGURATION
    assert finding.discovered_at == '2024-03-02T00:00:00+00:00'


@pytest.mark.asyncio
async def test_compliant_evaluation_passes():
    raw = dict(CONFIG_EVALUATION, ComplianceType='COMPLIANT')
    session, _ = make_session(evaluations=[raw])

    finding = (await make_connector(session).get_configuration_compliance())[0]

    assert finding.status is ComplianceStatus.PASS
    assert finding.severity is Severity.LOW


@pytest.mark.asyncio
async def test_snapshot_combines_both_sources():
    session, _ = make_session(findings=[SECURITY_HUB_FINDING], evaluations=[CONFIG_EVALUATION])

    snapshot = await make_connector(session).collect_compliance_data()

    assert len(snapshot.findings) == 2
    assert snapshot.id.startswith('aws-env-aws-')


@pytest.mark.asyncio
async def test_api_failure_returns_empty_list():
    session, clients = make_session()
    clients['securityhub'].get_paginator.side_effect = RuntimeError("AccessDenied")

    assert await make_connector(session).get_security_findings() == []


@pytest.mark.asyncio
async def test_clients_built_one_at_a_time_during_collection():
    session, clients = make_session(findings=[SECURITY_HUB_FINDING], evaluations=[CONFIG_EVALUATION])
    lock = threading.Lock()
    state = {'active': 0, 'peak': 0}

    def build_client(service, **kwargs):
        with lock:
            state['active'] += 1
            state['peak'] = max(state['peak'], state['active'])
        time.sleep(0.05)
        with lock:
            state['active'] -= 1
        return clients[service]

    session.client.side_effect = build_client

    snapshot = await make_connector(session).collect_compliance_data()

    assert len(snapshot.findings) == 2
    assert state['peak'] == 1


@pytest.mark.asyncio
async def test_clients_carry_call_timeout():
    session, _ = make_session()
    connector = AWSConnector('tenant-1', 'env-aws', CREDENTIALS, session=session, call_timeout=7,
                             retry_policy=RetryPolicy(max_retries=1, base_delay=0))

    await connector.test_connection()

    config = session.client.call_args.kwargs['config']
    assert config.read_timeout == 7
    assert config.connect_timeout == 7
