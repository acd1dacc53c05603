"""
Configuration for DevPulse.
Loads environment variables once and exposes them as a Settings object.
"""

import logging
import os
import sys
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

STORE_BACKENDS = ("memory", "gist", "sql")

REQUIRED_VARS = ["GITHUB_CLIENT_ID", "GITHUB_CLIENT_SECRET", "JWT_SECRET", "ANTHROPIC_API_KEY"]


class Settings:
    """
    Runtime settings read from the environment.

    Attributes:
        github_client_id: OAuth application client id
        github_client_secret: OAuth application client secret
        jwt_secret: Key used to sign session tokens
        anthropic_api_key: API key for the commit scorer
        anthropic_model: Model used for commit scoring and insights
        store_backend: 'memory', 'gist' or 'sql'
        gist_token: GitHub token owning the Gist database
        database_url: SQLAlchemy URL for the 'sql' backend
        frontend_url: Where the OAuth callback redirects the browser
        environment: 'production' enables secure cookies
        log_level: Root logging level
    """

    def __init__(
        self,
        github_client_id: Optional[str] = None,
        github_client_secret: Optional[str] = None,
        jwt_secret: Optional[str] = None,
        anthropic_api_key: Optional[str] = None,
        anthropic_model: str = "claude-sonnet-4-20250514",
        store_backend: str = "memory",
        gist_token: Optional[str] = None,
        database_url: str = "sqlite:///./devpulse.db",
        frontend_url: str = "http://localhost:3000",
        environment: str = "development",
        log_level: str = "INFO",
    ):
        self.github_client_id = github_client_id
        self.github_client_secret = github_client_secret
        self.jwt_secret = jwt_secret
        self.anthropic_api_key = anthropic_api_key
        self.anthropic_model = anthropic_model
        self.store_backend = store_backend.lower()
        self.gist_token = gist_token
        self.database_url = database_url
        self.frontend_url = frontend_url.rstrip("/")
        self.environment = environment
        self.log_level = log_level

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            github_client_id=os.getenv("GITHUB_CLIENT_ID"),
            github_client_secret=os.getenv("GITHUB_CLIENT_SECRET"),
            jwt_secret=os.getenv("JWT_SECRET"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            store_backend=os.getenv("STORE_BACKEND", "memory"),
            gist_token=os.getenv("GITHUB_GIST_TOKEN"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./devpulse.db"),
            frontend_url=os.getenv("FRONTEND_URL", "http://localhost:3000"),
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def missing(self) -> List[str]:
        """Names of required environment variables that are not set."""
        values = {
            "GITHUB_CLIENT_ID": self.github_client_id,
            "GITHUB_CLIENT_SECRET": self.github_client_secret,
            "JWT_SECRET": self.jwt_secret,
            "ANTHROPIC_API_KEY": self.anthropic_api_key,
        }
        missing = [name for name in REQUIRED_VARS if not values[name]]
        if self.store_backend == "gist" and not self.gist_token:
            missing.append("GITHUB_GIST_TOKEN")
        return missing

    def warn_if_incomplete(self) -> None:
        """Log missing variables; the app still starts without them."""
        missing = self.missing()
        if missing:
            logger.warning("Missing environment variables: %s", ", ".join(missing))
            logger.warning("The app will start but some features may not work.")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
