"""
NIST 800-53 control mapping tables

Each provider ships a JSON table (mappings/<provider>.json) from rule,
category or title strings to control ids and remediation text. Tables are
loaded once per directory and exposed read-only, so operators can point
CONNECTOR_MAPPINGS_DIR at their own copies without touching code.
"""

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from multicloud_compliance.config import ConnectorConfig
from multicloud_compliance.errors import ConnectorError
from multicloud_compliance.models import DEFAULT_CONTROL, CloudProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ControlMappingTable:
    """Immutable control/remediation lookup for one provider"""

    provider: CloudProvider
    controls: Mapping[str, Tuple[str, ...]]
    remediation: Mapping[str, str]
    default_controls: Tuple[str, ...] = (DEFAULT_CONTROL,)
    default_remediation: Optional[str] = None
    extras: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def controls_for(self, *keys) -> list:
        """Controls for the first key present in the table, else the defaults"""
        for key in keys:
            if key and key in self.controls:
                return list(self.controls[key])
        return list(self.default_controls)

    def has_controls(self, *keys) -> bool:
        return any(key and key in self.controls for key in keys)

    def remediation_for(self, *keys, default: Optional[str] = None) -> Optional[str]:
        for key in keys:
            if key and key in self.remediation:
                return self.remediation[key]
        return default if default is not None else self.default_remediation


def _parse_table(provider: CloudProvider, data: dict, source: Path) -> ControlMappingTable:
    if not isinstance(data, dict):
        raise ConnectorError(f"Control mapping file {source} must contain a JSON object")

    controls = data.get('controls', {})
    remediation = data.get('remediation', {})
    if not isinstance(controls, dict) or not isinstance(remediation, dict):
        raise ConnectorError(f"Control mapping file {source} has malformed 'controls' or 'remediation'")

    frozen_controls = {}
    for key, values in controls.items():
        if isinstance(values, str):
            values = [values]
        frozen_controls[key] = tuple(v.strip().upper() for v in values if v and v.strip())

    default_controls = tuple(data.get('default_controls') or [DEFAULT_CONTROL])
    extras = {k: v for k, v in data.items()
              if k not in ('provider', 'controls', 'remediation', 'default_controls', 'default_remediation')}

    return ControlMappingTable(
        provider=provider,
        controls=MappingProxyType(frozen_controls),
        remediation=MappingProxyType(dict(remediation)),
        default_controls=default_controls,
        default_remediation=data.get('default_remediation'),
        extras=MappingProxyType(extras)
    )


@lru_cache(maxsize=None)
def _load_table(provider: CloudProvider, mappings_dir: str) -> ControlMappingTable:
    path = Path(mappings_dir) / f"{provider.value}.json"
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except FileNotFoundError:
        raise ConnectorError(f"No control mapping table for {provider.value} at {path}") from None
    except json.JSONDecodeError as e:
        raise ConnectorError(f"Invalid JSON in control mapping table {path}: {e}") from e

    table = _parse_table(provider, data, path)
    logger.info(f"Loaded {len(table.controls)} {provider.value} control mappings from {path}")
    return table


def load_control_mappings(provider, mappings_dir=None) -> ControlMappingTable:
    """Load (once) the control mapping table for a provider"""
    provider = CloudProvider.parse(provider)
    directory = Path(mappings_dir) if mappings_dir else ConnectorConfig.get_mappings_dir()
    return _load_table(provider, str(directory.resolve()))


def clear_mapping_cache() -> None:
    """Forget loaded tables so the next load re-reads the files"""
    _load_table.cache_clear()
