"""
Connector error taxonomy and structured error logging
"""

import logging


class ConnectorError(Exception):
    """Base class for connector failures"""


class UnsupportedProviderError(ConnectorError, ValueError):
    """Provider value outside azure | aws | gcp | oracle"""


class MissingCredentialError(ConnectorError, ValueError):
    """A connector was constructed without a required credential field"""

    def __init__(self, provider: str, missing):
        self.provider = provider
        self.missing = sorted(missing)
        super().__init__(
            f"Missing required {provider} credential field(s): {', '.join(self.missing)}"
        )


class CollectionError(ConnectorError):
    """Both sub-collections of a snapshot failed"""


def log_connector_error(
    logger: logging.Logger,
    provider: str,
    operation: str,
    error: BaseException,
    **context
) -> None:
    """
    Log a caught connector error with provider and operation name

    Called before any fallback (empty list, False, None) so swallowed failures
    stay diagnosable. Context must never carry credential values.
    """
    provider_name = str(getattr(provider, 'value', provider))
    logger.error(
        f"[{provider_name.upper()} Connector] Error in {operation}: "
        f"{type(error).__name__}: {error}",
        extra={
            'provider': provider_name,
            'operation': operation,
            'error_type': type(error).__name__,
            **context
        }
    )
