"""
compliancehub server - Dynamic compliance forms, validation and filing.

Run with:
    compliancehub-server            # CLI entry point
    python -m compliancehub.server  # Module entry point

Or programmatically:
    from compliancehub.server import ComplianceHubServer
    server = ComplianceHubServer(port=8000)
    server.run()
"""

from .app import ComplianceHubServer, create_app
from .config import ServerConfig
from .database import Database, get_database

__all__ = [
    "create_app",
    "ComplianceHubServer",
    "ServerConfig",
    "get_database",
    "Database",
]
