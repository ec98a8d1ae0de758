"""
Environment configuration for RFD Discussions.

Values are read from environment variables when ``AppConfig`` is built.  A
``.env`` file in the project root is loaded first so local development does
not need exported variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

project_root = Path(__file__).parent.parent
load_dotenv(dotenv_path=project_root / ".env")

DEFAULT_PREFIX = "RFD"
DEFAULT_SITE_URL = "https://chat.example.com"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///rfd_discussions.db"

_SECRET_KEYS = frozenset({"webhook_secret", "rocketchat_auth_token"})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _redact(value: str) -> str:
    """Hide a secret, keeping 4 leading and 2 trailing chars of long values."""
    if len(value) < 8:
        return "***"
    return f"{value[:4]}***{value[-2:]}"


@dataclass(frozen=True)
class DiscussionSettings:
    """Options the reconciler needs, passed in explicitly at construction."""

    parent_channel: str
    site_url: Optional[str] = None
    prefix: str = DEFAULT_PREFIX
    overwrite_invalid_discussion_url: bool = False
    use_deep_links: bool = True


class AppConfig:
    """Service configuration resolved from the environment."""

    def __init__(self) -> None:
        self.parent_channel = os.environ.get("RFD_PARENT_CHANNEL", "").strip()
        self.webhook_secret = os.environ.get("RFD_WEBHOOK_SECRET", "")
        self.site_url = os.environ.get("RFD_SITE_URL", "").strip()
        self.prefix = os.environ.get("RFD_DISCUSSION_PREFIX", "").strip() or DEFAULT_PREFIX
        self.overwrite_invalid_discussion_url = _env_bool(
            "RFD_OVERWRITE_INVALID_DISCUSSION_URL", False
        )
        self.use_deep_links = _env_bool("RFD_USE_DEEP_LINKS", True)
        self.database_url = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)
        self.rocketchat_url = os.environ.get("ROCKETCHAT_URL", "").strip()
        self.rocketchat_user_id = os.environ.get("ROCKETCHAT_USER_ID", "")
        self.rocketchat_auth_token = os.environ.get("ROCKETCHAT_AUTH_TOKEN", "")
        self.log_level = os.environ.get("LOG_LEVEL", "info").lower()

    def missing_required(self) -> List[str]:
        """Names of required settings that are empty."""
        missing = []
        if not self.webhook_secret:
            missing.append("webhook_secret")
        if not self.parent_channel:
            missing.append("parent_channel")
        return missing

    def discussion_settings(self) -> DiscussionSettings:
        return DiscussionSettings(
            parent_channel=self.parent_channel,
            site_url=self.site_url or None,
            prefix=self.prefix,
            overwrite_invalid_discussion_url=self.overwrite_invalid_discussion_url,
            use_deep_links=self.use_deep_links,
        )

    def to_dict(self, redact_secrets: bool = True) -> Dict[str, Any]:
        values = {
            "parent_channel": self.parent_channel,
            "webhook_secret": self.webhook_secret,
            "site_url": self.site_url,
            "prefix": self.prefix,
            "overwrite_invalid_discussion_url": self.overwrite_invalid_discussion_url,
            "use_deep_links": self.use_deep_links,
            "database_url": self.database_url,
            "rocketchat_url": self.rocketchat_url,
            "rocketchat_user_id": self.rocketchat_user_id,
            "rocketchat_auth_token": self.rocketchat_auth_token,
            "log_level": self.log_level,
        }
        if redact_secrets:
            for key in _SECRET_KEYS:
                values[key] = _redact(values[key])
        return values
