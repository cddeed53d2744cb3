#!/usr/bin/env python3
"""
Multi-Cloud Compliance Scan
Loads environment descriptors, drives one tenant's connector manager once
and writes a JSON snapshot report
"""

import asyncio
import json
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

from dotenv import load_dotenv

from multicloud_compliance.config import ConnectorConfig
from multicloud_compliance.connectors.manager import CloudConnectorManager
from multicloud_compliance.models import CloudEnvironment, DateTimeEncoder

load_dotenv()

logging.basicConfig(level=logging.DEBUG if ConnectorConfig.get_debug_mode() else logging.INFO)
logger = logging.getLogger(__name__)

ENV_REFERENCE = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')


def expand_env(value):
    """Replace ${NAME} references with environment values (missing -> '')"""
    if isinstance(value, str):
        return ENV_REFERENCE.sub(lambda m: os.getenv(m.group(1), ''), value)
    if isinstance(value, dict):
        return {k: expand_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env(v) for v in value]
    return value


def load_environments(path: str, tenant_id: str) -> List[Tuple[CloudEnvironment, Dict[str, Any]]]:
    """Parse [{"environment": {...}, "credentials": {...}}, ...]"""
    with open(path, 'r', encoding='utf-8') as f:
        entries = json.load(f)

    environments = []
    for entry in entries:
        env_data = dict(entry['environment'])
        env_data.setdefault('tenant_id', tenant_id)
        environment = CloudEnvironment(**env_data)
        if not environment.is_active:
            logger.info(f"Skipping inactive environment: {environment.name}")
            continue
        environments.append((environment, expand_env(entry.get('credentials', {}))))
    return environments


class ComplianceScanner:
    """One-shot scan of every configured environment for a tenant"""

    def __init__(self, tenant_id: str, manager: CloudConnectorManager = None):
        self.tenant_id = tenant_id
        self.manager = manager or CloudConnectorManager(tenant_id)

    async def scan(self, environments: List[Tuple[CloudEnvironment, Dict[str, Any]]]) -> Dict[str, Any]:
        logger.info(f"Starting compliance scan for tenant {self.tenant_id} ({len(environments)} environments)")

        initialized = []
        for environment, credentials in environments:
            try:
                if await self.manager.initialize_connector(environment, credentials):
                    initialized.append(environment.id)
            except Exception as e:
                logger.error(f"Cannot create connector for {environment.name}: {e}")

        health = await self.manager.health_check()
        logger.info(f"Health: {len(health['healthy'])} healthy, {len(health['unhealthy'])} unhealthy of {health['total']}")

        snapshots = await self.manager.collect_all_compliance_data()
        for snapshot in snapshots:
            summary = snapshot.summary()
            logger.info(
                f"{snapshot.provider.value}/{snapshot.environment_id}: {summary['total']} findings "
                f"({summary['status']['fail']} fail, {summary['status']['pass']} pass)"
            )

        report = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'tenant_id': self.tenant_id,
            'initialized': initialized,
            'health': health,
            'stats': self.manager.get_connector_stats(),
            'snapshots': [s.to_dict() for s in snapshots],
        }
        self.manager.dispose()
        return report

    @staticmethod
    def save_report(report: Dict[str, Any], directory: str = '.') -> str:
        filename = os.path.join(
            directory, f"compliance_snapshot_{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
        )
        with open(filename, 'w') as f:
            json.dump(report, f, indent=2, cls=DateTimeEncoder)
        logger.info(f"Report saved: {filename}")
        return filename


def main(argv: List[str] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    path = argv[0] if argv else os.getenv('CLOUD_ENVIRONMENTS_FILE')
    tenant_id = os.getenv('COMPLIANCE_TENANT_ID', 'default')
    if not path:
        logger.error("Usage: compliance_scan.py <environments.json> (or set CLOUD_ENVIRONMENTS_FILE)")
        return 2

    environments = load_environments(path, tenant_id)
    scanner = ComplianceScanner(tenant_id)
    report = asyncio.run(scanner.scan(environments))
    scanner.save_report(report)
    return 0 if report['snapshots'] or not environments else 1


if __name__ == "__main__":
    sys.exit(main())
