"""Artify configuration management."""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# Monthly credit allowance per plan
PLAN_CREDITS: dict[str, int] = {
    "starter": 50,
    "pro": 500,
}

# Days between allowance refills
CREDIT_CYCLE_DAYS = 30

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Config:
    """Artify configuration. Built once at startup, never mutated."""

    workspace_path: Path = field(default_factory=lambda: Path.home() / ".artify")
    log_level: str = "INFO"
    wal_mode: bool = True

    # Session / auth
    admin_emails: tuple[str, ...] = ()
    mock_auth: bool = False
    mock_user_id: str = "dev-user-123"
    mock_user_email: str = "dev@localhost"
    jwt_secret: str = "test-secret-key-do-not-use"

    # Third-party APIs
    loudly_api_key: str | None = None
    loudly_base_url: str = "https://soundtracks.loudly.com"
    upstream_timeout: float = 10.0

    # Validation
    blocking_threshold: str = "blocking"
    enrichment_timeout: float = 20.0

    # Credits
    enrichment_cost: int = 1
    video_unlock_cost: int = 0

    # Remote sync outbox
    sync_base_delay: float = 0.5
    sync_max_delay: float = 30.0
    sync_max_retries: int = 5

    @classmethod
    def load(cls, workspace_path: Path | None = None) -> Config:
        """Load config from defaults, then YAML file, then env vars."""
        values: dict[str, Any] = {}

        # An explicit path beats ARTIFY_WORKSPACE
        env_path = os.environ.get("ARTIFY_WORKSPACE")
        if workspace_path:
            values["workspace_path"] = Path(workspace_path)
        elif env_path:
            values["workspace_path"] = Path(env_path)

        base = cls(**values)

        # Load YAML config if exists
        config_file = base.workspace_path / "config.yaml"
        if config_file.exists():
            with open(config_file) as f:
                data = yaml.safe_load(f) or {}
            values.update(_coerce(data))

        # Env overrides YAML
        env_log = os.environ.get("ARTIFY_LOG_LEVEL")
        if env_log:
            values["log_level"] = env_log

        admins = os.environ.get("ADMIN_EMAILS")
        if admins is not None:
            values["admin_emails"] = parse_email_list(admins)

        mock = os.environ.get("ARTIFY_MOCK_AUTH")
        if mock is not None:
            values["mock_auth"] = mock.strip().lower() in _TRUTHY

        api_key = os.environ.get("LOUDLY_API_KEY")
        if api_key:
            values["loudly_api_key"] = api_key

        secret = os.environ.get("ARTIFY_JWT_SECRET")
        if secret:
            values["jwt_secret"] = secret

        return replace(base, **values)

    @property
    def db_path(self) -> Path:
        return self.workspace_path / "artify.db"

    def with_overrides(self, **changes: Any) -> Config:
        return replace(self, **_coerce(changes))

    def public_flags(self) -> dict[str, Any]:
        """Non-secret configuration, safe for the debug endpoint."""
        return {
            "hasLoudlyKey": bool(self.loudly_api_key),
            "mockAuth": self.mock_auth,
            "adminCount": len(self.admin_emails),
            "blockingThreshold": self.blocking_threshold,
            "enrichmentCost": self.enrichment_cost,
            "videoUnlockCost": self.video_unlock_cost,
            "logLevel": self.log_level,
        }

    def save(self) -> None:
        """Save current config to YAML (secrets are never written)."""
        self.workspace_path.mkdir(parents=True, exist_ok=True)
        config_file = self.workspace_path / "config.yaml"
        data = {
            "log_level": self.log_level,
            "wal_mode": self.wal_mode,
            "admin_emails": list(self.admin_emails),
            "mock_auth": self.mock_auth,
            "blocking_threshold": self.blocking_threshold,
            "enrichment_cost": self.enrichment_cost,
            "video_unlock_cost": self.video_unlock_cost,
            "sync_max_retries": self.sync_max_retries,
        }
        with open(config_file, "w") as f:
            yaml.dump(data, f, default_flow_style=False)


def parse_email_list(raw: str) -> tuple[str, ...]:
    """Split a comma-separated allowlist, lowercased, blanks dropped."""
    return tuple(e.strip().lower() for e in raw.split(",") if e.strip())


def _coerce(data: dict[str, Any]) -> dict[str, Any]:
    """Convert raw YAML/keyword values to the declared field types."""
    known = {f.name: f for f in fields(Config)}
    defaults = Config()
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            continue
        current = getattr(defaults, key)
        if key == "admin_emails":
            if isinstance(value, str):
                result[key] = parse_email_list(value)
            else:
                result[key] = tuple(str(e).strip().lower() for e in value or ())
        elif isinstance(current, Path):
            result[key] = Path(value)
        elif isinstance(current, bool):
            result[key] = value if isinstance(value, bool) else str(value).lower() in _TRUTHY
        elif current is None or value is None:
            result[key] = value
        else:
            result[key] = type(current)(value)
    return result
