from .base import CloudConnector
from .aws_connector import AWSConnector
from .azure_connector import AzureConnector
from .gcp_connector import GCPConnector
from .oci_connector import OCIConnector
from .manager import CloudConnectorManager, ConnectorState, create_connector
from .retry import RetryPolicy, retry_with_backoff

__all__ = [
    'CloudConnector', 'AWSConnector', 'AzureConnector', 'GCPConnector', 'OCIConnector',
    'CloudConnectorManager', 'ConnectorState', 'create_connector',
    'RetryPolicy', 'retry_with_backoff',
]
