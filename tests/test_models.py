"""Unit tests for the normalized finding and snapshot model."""

import json
from datetime import datetime, timezone

import pytest

from multicloud_compliance.errors import UnsupportedProviderError
from multicloud_compliance.models import (
    DEFAULT_CONTROL,
    CloudConnectorConfig,
    CloudEnvironment,
    CloudProvider,
    ComplianceData,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
    normalize_controls,
)


def make_finding(**overrides):
    data = {
        'id': 'aws-config-rule-1',
        'provider': 'aws',
        'severity': 'high',
        'status': 'fail',
        'mapped_controls': ['sc-28'],
        'resource_id': 'vol-1',
        'rule_name': 'encrypted-volumes',
        'description': 'Volume is not encrypted',
    }
    data.update(overrides)
    return ComplianceFinding(**data)


class TestCloudProvider:
    def test_parse_is_case_insensitive(self):
        assert CloudProvider.parse('AWS') is CloudProvider.AWS
        assert CloudProvider.parse(CloudProvider.ORACLE) is CloudProvider.ORACLE

    def test_parse_unknown_provider_raises(self):
        with pytest.raises(UnsupportedProviderError):
            CloudProvider.parse('digitalocean')

    def test_environment_rejects_unknown_provider(self):
        with pytest.raises(UnsupportedProviderError):
            CloudEnvironment(id='e1', provider='ibm', name='IBM', region='us-south')


class TestComplianceFinding:
    def test_coerces_vocabularies(self):
        finding = make_finding()

        assert finding.provider is CloudProvider.AWS
        assert finding.severity is Severity.HIGH
        assert finding.status is ComplianceStatus.FAIL
        assert finding.category is FindingCategory.SECURITY

    def test_invalid_severity_rejected(self):
        with pytest.raises(ValueError):
            make_finding(severity='informational')

    def test_empty_controls_fall_back_to_default(self):
        assert make_finding(mapped_controls=[]).mapped_controls == [DEFAULT_CONTROL]

    def test_controls_uppercased_and_deduplicated(self):
        finding = make_finding(mapped_controls=['ac-3', 'SC-7', 'AC-3'])
        assert finding.mapped_controls == ['AC-3', 'SC-7']

    def test_timestamps_default(self):
        finding = make_finding()
        assert finding.discovered_at
        assert finding.last_checked == finding.discovered_at

    def test_to_dict_uses_plain_values(self):
        data = make_finding(status='not-applicable').to_dict()

        assert data['provider'] == 'aws'
        assert data['status'] == 'not-applicable'
        assert data['category'] == 'security'
        json.dumps(data)


def test_normalize_controls_skips_blanks():
    assert normalize_controls(['', '  ', 'ia-2']) == ['IA-2']
    assert normalize_controls(None) == [DEFAULT_CONTROL]


class TestComplianceData:
    def test_create_builds_id_from_provider_environment_and_time(self):
        collected = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        snapshot = ComplianceData.create('gcp', 'tenant-1', 'env-9', [], collected_at=collected)

        assert snapshot.id == f"gcp-env-9-{int(collected.timestamp() * 1000)}"
        assert snapshot.collected_at == collected.isoformat()
        assert snapshot.provider is CloudProvider.GCP

    def test_snapshot_is_immutable(self):
        snapshot = ComplianceData.create('aws', 't', 'e', [make_finding()])
        with pytest.raises(Exception):
            snapshot.tenant_id = 'other'
        assert isinstance(snapshot.findings, tuple)

    def test_summary_counts(self):
        findings = [
            make_finding(id='1'),
            make_finding(id='2', status='pass', severity='low'),
            make_finding(id='3', status='manual', severity='low'),
        ]
        summary = ComplianceData.create('aws', 't', 'e', findings).summary()

        assert summary['total'] == 3
        assert summary['status'] == {'pass': 1, 'fail': 1, 'manual': 1, 'not-applicable': 0}
        assert summary['severity']['low'] == 2

    def test_to_json_handles_datetimes_in_raw_data(self):
        raw = {'security_findings': [{'CreatedAt': datetime(2024, 5, 1, tzinfo=timezone.utc)}]}
        snapshot = ComplianceData.create('aws', 't', 'e', [make_finding()], raw_data=raw)

        payload = json.loads(snapshot.to_json())
        assert payload['raw_data']['security_findings'][0]['CreatedAt'].startswith('2024-05-01')
        assert payload['findings'][0]['mapped_controls'] == ['SC-28']


def test_connector_config_defaults():
    config = CloudConnectorConfig(provider='azure', tenant_id='t', environment_id='e')
    assert config.sync_interval == 60
    assert config.is_enabled is True
    assert config.to_dict()['provider'] == 'azure'
