"""
Deploy Client module.

HTTP client for the deploy API, its error types, connection settings and
the ``deployctl`` command line interface.
"""

from .client import AsyncDeployClient, DeployClient
from .errors import ApplicationError, DeployAPIError, TransportError

__all__ = [
    "ApplicationError",
    "AsyncDeployClient",
    "DeployAPIError",
    "DeployClient",
    "TransportError",
]
