"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List, Optional, Sequence

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator

from .domain.models import User
from .domain.registry import UserRegistry

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class DefaultsConfig(BaseModel):
    """Default settings for a reconciliation run."""
    window_days: int = 7
    log_level: str = "WARNING"

    @field_validator("window_days")
    @classmethod
    def validate_window_days(cls, value: int) -> int:
        """Ensure the default window is positive."""
        if value <= 0:
            raise ValueError("window_days must be greater than zero")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        normalized = value.upper()
        if normalized not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {value}")
        return normalized


class UserConfig(BaseModel):
    """A user whose calendar should be reconciled."""
    email: str
    display_name: str = ""
    calendar_id: str = ""  # Optional: for mock data mapping

    def to_user(self) -> User:
        return User(
            email=self.email,
            display_name=self.display_name,
            calendar_id=self.calendar_id,
        )


class AppConfig(BaseModel):
    """Application configuration."""
    client_id: str
    tenant_id: str
    client_secret: Optional[str] = None
    graph_endpoint: str = "https://graph.microsoft.com/v1.0"
    timezone: str = "Europe/Berlin"
    max_connections: int = 8
    request_timeout_seconds: int = 30
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    users: List[UserConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA identifier."""
        if value not in pendulum.timezones():
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("max_connections")
    @classmethod
    def validate_max_connections(cls, value: int) -> int:
        """Connection limit sizes both the HTTP pool and the lookup workers."""
        if not 1 <= value <= 64:
            raise ValueError(f"max_connections must be between 1 and 64, got {value}")
        return value

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("request_timeout_seconds must be greater than zero")
        return value

    @field_validator("graph_endpoint")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("users")
    @classmethod
    def validate_users(cls, value: List[UserConfig]) -> List[UserConfig]:
        """Ensure user emails are unique."""
        seen_emails: set[str] = set()
        for user in value:
            email_key = user.email.lower()
            if email_key in seen_emails:
                raise ValueError(f"Duplicate user email detected: {user.email}")
            seen_emails.add(email_key)
        return value

    def get_authority_url(self) -> str:
        """Get the formatted authority URL."""
        return f"https://login.microsoftonline.com/{self.tenant_id}"

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_user_by_email(self, email: str) -> UserConfig | None:
        """Find a configured user by email."""
        for user in self.users:
            if user.email.lower() == email.lower():
                return user
        return None

    def find_user_by_name(self, name: str) -> UserConfig | None:
        """Find a configured user by display name."""
        for user in self.users:
            if user.display_name and user.display_name.lower() == name.lower():
                return user
        return None

    def resolve_users(self, identifiers: Sequence[str] = ()) -> UserRegistry:
        """
        Resolve identifiers (email or display name) into a user registry.

        Without identifiers every configured user is returned. Unconfigured
        email addresses are accepted as bare users.

        Raises:
            ValueError: If a name cannot be resolved
        """
        if not identifiers:
            return UserRegistry.from_users(user.to_user() for user in self.users)

        resolved: List[User] = []
        unknown_identifiers: List[str] = []

        for identifier in identifiers:
            configured = self.find_user_by_email(identifier) or self.find_user_by_name(identifier)
            if configured:
                resolved.append(configured.to_user())
            elif "@" in identifier:
                resolved.append(User(email=identifier.strip()))
            else:
                unknown_identifiers.append(identifier)

        if unknown_identifiers:
            missing = ", ".join(sorted(set(unknown_identifiers)))
            raise ValueError(
                f"Unknown user identifier(s): {missing}. "
                "Ensure they exist in the configuration or provide valid email addresses."
            )

        return UserRegistry.from_users(resolved)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of fbsync/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
