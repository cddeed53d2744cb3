"""
Multi-Cloud Compliance Schema
Normalized finding and snapshot structure shared by every cloud connector
(Azure, AWS, GCP, OCI)
"""

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from multicloud_compliance.errors import UnsupportedProviderError

DEFAULT_CONTROL = "SC-1"

# ============================================================================
# ENUMS - Fixed vocabularies
# ============================================================================

class CloudProvider(str, Enum):
    """Supported cloud providers"""
    AZURE = "azure"
    AWS = "aws"
    GCP = "gcp"
    ORACLE = "oracle"

    @classmethod
    def parse(cls, value) -> "CloudProvider":
        """Coerce a provider name, raising UnsupportedProviderError if unknown"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise UnsupportedProviderError(f"Unsupported cloud provider: {value}") from None

class Severity(str, Enum):
    """Canonical severity of a finding"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

class ComplianceStatus(str, Enum):
    """Canonical compliance status of a finding"""
    PASS = "pass"
    FAIL = "fail"
    MANUAL = "manual"
    NOT_APPLICABLE = "not-applicable"

class FindingCategory(str, Enum):
    """Which sub-collection produced the finding"""
    SECURITY = "security"
    CONFIGURATION = "configuration"

# ============================================================================
# HELPERS
# ============================================================================

class DateTimeEncoder(json.JSONEncoder):
    """JSON encoder that handles datetime objects and enums in raw payloads"""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value

        try:
            return super().default(obj)
        except TypeError:
            return str(obj)

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string"""
    return utc_now().isoformat()

def normalize_controls(controls) -> List[str]:
    """Ordered, de-duplicated control list; never empty"""
    seen = []
    for control in controls or []:
        control = str(control).strip().upper()
        if control and control not in seen:
            seen.append(control)
    return seen or [DEFAULT_CONTROL]

# ============================================================================
# ENVIRONMENT & CONNECTOR SETTINGS
# ============================================================================

@dataclass
class CloudEnvironment:
    """
    One configured cloud account/subscription a tenant monitors

    Example:
        CloudEnvironment(
            id='env-aws-prod',
            provider='aws',
            name='AWS Prod',
            region='us-east-1'
        )
    """

    id: str
    provider: CloudProvider
    name: str
    region: str
    tenant_id: Optional[str] = None
    is_active: bool = True

    def __post_init__(self):
        self.provider = CloudProvider.parse(self.provider)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['provider'] = self.provider.value
        return data

@dataclass
class CloudConnectorConfig:
    """Per-environment sync settings (sync_interval is in minutes)"""

    provider: CloudProvider
    tenant_id: str
    environment_id: str
    sync_interval: int = 60
    is_enabled: bool = True

    def __post_init__(self):
        self.provider = CloudProvider.parse(self.provider)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['provider'] = self.provider.value
        return data

# ============================================================================
# COMPLIANCE FINDING - Canonical unit of output
# ============================================================================

@dataclass
class ComplianceFinding:
    """
    Normalized compliance finding - single schema for all providers

    severity and status always come from the fixed enums, whatever vocabulary
    the source provider uses. mapped_controls is never empty.
    """

    id: str
    provider: CloudProvider
    severity: Severity
    status: ComplianceStatus
    mapped_controls: List[str]
    resource_id: Optional[str]
    rule_name: Optional[str]
    description: str
    remediation: Optional[str] = None
    discovered_at: str = None
    last_checked: str = None
    category: FindingCategory = FindingCategory.SECURITY

    def __post_init__(self):
        self.provider = CloudProvider.parse(self.provider)
        self.severity = Severity(self.severity)
        self.status = ComplianceStatus(self.status)
        self.category = FindingCategory(self.category)
        self.mapped_controls = normalize_controls(self.mapped_controls)
        if self.description is None:
            self.description = ""
        now = utc_now_iso()
        if self.discovered_at is None:
            self.discovered_at = now
        if self.last_checked is None:
            self.last_checked = self.discovered_at

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        data = asdict(self)
        data['provider'] = self.provider.value
        data['severity'] = self.severity.value
        data['status'] = self.status.value
        data['category'] = self.category.value
        return data

# ============================================================================
# COMPLIANCE DATA - One collection snapshot
# ============================================================================

@dataclass(frozen=True)
class ComplianceData:
    """Immutable snapshot of all findings collected from one environment"""

    id: str
    tenant_id: str
    environment_id: str
    provider: CloudProvider
    collected_at: str
    raw_data: Dict[str, Any] = field(default_factory=dict)
    findings: tuple = ()

    @classmethod
    def create(
        cls,
        provider: CloudProvider,
        tenant_id: str,
        environment_id: str,
        findings: List[ComplianceFinding],
        raw_data: Dict[str, Any] = None,
        collected_at: datetime = None
    ) -> "ComplianceData":
        """Build a snapshot with the provider-environment-timestamp id"""
        provider = CloudProvider.parse(provider)
        collected_at = collected_at or utc_now()
        millis = int(collected_at.timestamp() * 1000)
        return cls(
            id=f"{provider.value}-{environment_id}-{millis}",
            tenant_id=tenant_id,
            environment_id=environment_id,
            provider=provider,
            collected_at=collected_at.isoformat(),
            raw_data=raw_data or {},
            findings=tuple(findings)
        )

    def summary(self) -> Dict[str, Any]:
        """Counts by status and severity"""
        by_status = {status.value: 0 for status in ComplianceStatus}
        by_severity = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            by_status[finding.status.value] += 1
            by_severity[finding.severity.value] += 1
        return {
            'total': len(self.findings),
            'status': by_status,
            'severity': by_severity
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'id': self.id,
            'tenant_id': self.tenant_id,
            'environment_id': self.environment_id,
            'provider': self.provider.value,
            'collected_at': self.collected_at,
            'raw_data': self.raw_data,
            'findings': [f.to_dict() for f in self.findings]
        }

    def to_json(self, **kwargs) -> str:
        return json.dumps(self.to_dict(), cls=DateTimeEncoder, **kwargs)
