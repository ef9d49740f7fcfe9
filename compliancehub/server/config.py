"""
Server configuration for compliancehub.
"""

import os
import secrets
from dataclasses import dataclass, field
from typing import Dict, Optional, Set


def _parse_users(raw: str) -> Dict[str, str]:
    users = {}
    for entry in raw.split(","):
        email, sep, password = entry.strip().partition(":")
        if sep and email and password:
            users[email] = password
    return users


@dataclass
class ServerConfig:
    """Configuration for the compliancehub server."""

    host: str = "0.0.0.0"
    port: int = 8000

    database_url: Optional[str] = None

    # Where uploaded blobs are written and the base URL put in pre-signed links
    upload_dir: str = "./uploads"
    public_base_url: Optional[str] = None

    signing_secret: Optional[str] = None
    upload_url_ttl_seconds: int = 900

    token_ttl_seconds: int = 3600

    users: Dict[str, str] = field(
        default_factory=lambda: {
            "demo@example.com": "demo-password",
        }
    )

    # Tenants accepted in the Version header
    tenants: Set[str] = field(default_factory=lambda: {"demo"})

    schema_dir: Optional[str] = None

    default_page_size: int = 20
    max_page_size: int = 100

    cors_origins: list = field(default_factory=lambda: ["*"])

    debug: bool = False

    log_level: str = "info"

    def __post_init__(self):
        if self.database_url is None:
            self.database_url = os.environ.get("DATABASE_URL", "sqlite:///./compliancehub.db")

        if self.public_base_url is None:
            self.public_base_url = f"http://localhost:{self.port}"
        self.public_base_url = self.public_base_url.rstrip("/")

        if self.signing_secret is None:
            self.signing_secret = os.environ.get(
                "COMPLIANCEHUB_SIGNING_SECRET", secrets.token_hex(32)
            )

        env_users = os.environ.get("COMPLIANCEHUB_USERS")
        if env_users:
            self.users = _parse_users(env_users)

        env_tenants = os.environ.get("COMPLIANCEHUB_TENANTS")
        if env_tenants:
            self.tenants = {t.strip() for t in env_tenants.split(",") if t.strip()}

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create configuration from environment variables."""
        return cls(
            host=os.environ.get("COMPLIANCEHUB_HOST", "0.0.0.0"),
            port=int(os.environ.get("COMPLIANCEHUB_PORT", "8000")),
            database_url=os.environ.get("DATABASE_URL"),
            upload_dir=os.environ.get("COMPLIANCEHUB_UPLOAD_DIR", "./uploads"),
            public_base_url=os.environ.get("COMPLIANCEHUB_PUBLIC_URL"),
            upload_url_ttl_seconds=int(os.environ.get("COMPLIANCEHUB_UPLOAD_TTL", "900")),
            token_ttl_seconds=int(os.environ.get("COMPLIANCEHUB_TOKEN_TTL", "3600")),
            schema_dir=os.environ.get("COMPLIANCEHUB_SCHEMA_DIR"),
            debug=os.environ.get("COMPLIANCEHUB_DEBUG", "").lower() == "true",
            log_level=os.environ.get("COMPLIANCEHUB_LOG_LEVEL", "info"),
        )
