"""Multi-cloud compliance connectors (Azure, AWS, GCP, OCI)"""

from .models import (
    CloudConnectorConfig,
    CloudEnvironment,
    CloudProvider,
    ComplianceData,
    ComplianceFinding,
    ComplianceStatus,
    FindingCategory,
    Severity,
)

__version__ = '0.1.0'

__all__ = [
    'CloudConnectorConfig', 'CloudEnvironment', 'CloudProvider', 'ComplianceData',
    'ComplianceFinding', 'ComplianceStatus', 'FindingCategory', 'Severity',
]
