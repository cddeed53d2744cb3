"""
Multi-Cloud Connector Configuration
Centralized config for retries, call deadlines, result caps and mapping tables
"""

import os
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

load_dotenv()

PACKAGED_MAPPINGS_DIR = Path(__file__).resolve().parent / 'connectors' / 'mappings'

# ============================================================================
# CONNECTOR SETTINGS
# ============================================================================

class ConnectorConfig:
    """Centralized connector configuration"""

    @staticmethod
    def _get_int(name: str, default: int) -> int:
        try:
            return int(os.getenv(name, str(default)))
        except ValueError:
            return default

    # ========================================================================
    # RETRY - Exponential backoff for provider calls
    # ========================================================================

    @classmethod
    def get_max_retries(cls) -> int:
        """
        Attempts per provider call before giving up

        ENV: CONNECTOR_MAX_RETRIES=3
        """
        return max(1, cls._get_int('CONNECTOR_MAX_RETRIES', 3))

    @classmethod
    def get_retry_base_delay(cls) -> float:
        """
        Base backoff delay in seconds (wait = base * 2^(attempt-1))

        ENV: CONNECTOR_RETRY_BASE_DELAY_MS=1000
        """
        return max(0, cls._get_int('CONNECTOR_RETRY_BASE_DELAY_MS', 1000)) / 1000.0

    # ========================================================================
    # DEADLINES & LIMITS
    # ========================================================================

    @classmethod
    def get_call_timeout(cls) -> float:
        """
        Deadline for a single outbound provider call, in seconds

        ENV: CONNECTOR_CALL_TIMEOUT_SECONDS=60
        Expiry counts as a retryable failure.
        """
        return float(max(1, cls._get_int('CONNECTOR_CALL_TIMEOUT_SECONDS', 60)))

    @classmethod
    def get_max_results(cls) -> int:
        """
        Maximum raw records fetched per sub-collection (avoids huge backfills)

        ENV: CONNECTOR_MAX_RESULTS=1000
        """
        return max(1, cls._get_int('CONNECTOR_MAX_RESULTS', 1000))

    # ========================================================================
    # CONTROL MAPPINGS
    # ========================================================================

    @classmethod
    def get_mappings_dir(cls) -> Path:
        """
        Directory holding <provider>.json control-mapping tables

        ENV: CONNECTOR_MAPPINGS_DIR=/etc/compliance/mappings
        Default: tables shipped with the package
        """
        override = os.getenv('CONNECTOR_MAPPINGS_DIR', '').strip()
        return Path(override) if override else PACKAGED_MAPPINGS_DIR

    # ========================================================================
    # PROVIDER POLICIES
    # ========================================================================

    @classmethod
    def get_azure_required_tags(cls) -> List[str]:
        """
        Tags every Azure resource group must carry

        ENV: AZURE_REQUIRED_TAGS=Environment,Owner,CostCenter
        """
        tags_str = os.getenv('AZURE_REQUIRED_TAGS', 'Environment,Owner,CostCenter')
        return [t.strip() for t in tags_str.split(',') if t.strip()]

    # ========================================================================
    # DEBUG
    # ========================================================================

    @classmethod
    def get_debug_mode(cls) -> bool:
        """Enable debug logging"""
        return os.getenv('CONNECTOR_DEBUG', 'false').lower() == 'true'

    @classmethod
    def as_dict(cls) -> Dict[str, Any]:
        """Effective configuration for diagnostics (no credentials)"""
        return {
            'max_retries': cls.get_max_retries(),
            'retry_base_delay_seconds': cls.get_retry_base_delay(),
            'call_timeout_seconds': cls.get_call_timeout(),
            'max_results': cls.get_max_results(),
            'mappings_dir': str(cls.get_mappings_dir()),
            'azure_required_tags': cls.get_azure_required_tags(),
            'debug': cls.get_debug_mode(),
        }
