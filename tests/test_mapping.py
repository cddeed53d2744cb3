"""Unit tests for control mapping tables."""

import json

import pytest

from multicloud_compliance.connectors.mapping import load_control_mappings
from multicloud_compliance.errors import ConnectorError
from multicloud_compliance.models import CloudProvider


@pytest.mark.parametrize('provider', list(CloudProvider))
def test_packaged_tables_load(provider):
    table = load_control_mappings(provider)

    assert table.provider is provider
    assert table.default_controls == ('SC-1',)
    assert table.controls
    assert table.default_remediation


def test_lookup_uses_first_known_key():
    table = load_control_mappings('aws')

    assert table.controls_for(None, 'unknown', 'cloudtrail-enabled') == ['AU-2', 'AU-12']
    assert table.controls_for('unknown') == ['SC-1']
    assert table.has_controls('encrypted-volumes')
    assert not table.has_controls('unknown', None)


def test_remediation_default():
    table = load_control_mappings('oracle')

    assert table.remediation_for('BUCKET_IS_PUBLIC').startswith('Remove public access')
    assert table.remediation_for('unknown') == table.default_remediation
    assert table.remediation_for('unknown', default='custom') == 'custom'


def test_tables_are_read_only():
    table = load_control_mappings('gcp')
    with pytest.raises(TypeError):
        table.controls['NEW'] = ('AC-1',)


def test_tables_cached_per_directory():
    assert load_control_mappings('azure') is load_control_mappings(CloudProvider.AZURE)


def test_gcp_table_carries_asset_policies():
    policies = load_control_mappings('gcp').extras['asset_policies']
    assert any(p['asset_type'] == 'storage.googleapis.com/Bucket' for p in policies)


def test_override_directory(tmp_path, monkeypatch):
    (tmp_path / 'aws.json').write_text(json.dumps({
        'provider': 'aws',
        'controls': {'custom-rule': 'ac-6'},
        'remediation': {},
    }))
    monkeypatch.setenv('CONNECTOR_MAPPINGS_DIR', str(tmp_path))

    table = load_control_mappings('aws')

    assert table.controls_for('custom-rule') == ['AC-6']
    assert table.controls_for('cloudtrail-enabled') == ['SC-1']


def test_missing_table_raises(tmp_path):
    with pytest.raises(ConnectorError, match="No control mapping table"):
        load_control_mappings('azure', mappings_dir=tmp_path)


def test_malformed_table_raises(tmp_path):
    (tmp_path / 'gcp.json').write_text('{not json')
    with pytest.raises(ConnectorError, match="Invalid JSON"):
        load_control_mappings('gcp', mappings_dir=tmp_path)
