"""Configuration loading with priority: env > config file > defaults."""

from __future__ import annotations

import getpass
import os
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel, field_validator

from labbcat.exceptions import InteractiveModeRequiredError

CONFIG_DIR = Path.home() / ".config" / "labbcat"
CONFIG_PATH = CONFIG_DIR / "config.yaml"

HTTP_TIMEOUT = float(os.environ.get("LABBCAT_HTTP_TIMEOUT", "300"))
"""Seconds to wait on a single HTTP exchange.

Configurable via ``LABBCAT_HTTP_TIMEOUT`` env var (default 300).
"""


def is_interactive_disabled() -> bool:
    """Return True when LABBCAT_NO_INTERACTIVE is set to 'true' (case-insensitive)."""
    return os.environ.get("LABBCAT_NO_INTERACTIVE", "").lower() == "true"


def require_interactive(hint: str) -> None:
    """Raise if interactive prompts are disabled.

    Parameters
    ----------
    hint:
        Human-readable explanation of which CLI flag / env var the caller
        should use instead of an interactive prompt.

    """
    if is_interactive_disabled():
        raise InteractiveModeRequiredError(
            f"Interactive prompt required but LABBCAT_NO_INTERACTIVE=true. {hint}"
        )


def get_config_path(config_path: Path | None = None) -> Path:
    """Return path to config file.

    Uses *config_path* if provided, otherwise LABBCAT_CONFIG env var,
    otherwise default CONFIG_PATH.
    """
    if config_path is not None:
        return config_path
    path = os.environ.get("LABBCAT_CONFIG")
    return Path(path) if path else CONFIG_PATH


def _load_raw_yaml(path: Path) -> dict[str, object]:
    """Load a YAML file and return its top-level mapping (or empty dict)."""
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        logger.warning(f"Invalid config format in {path}; expected mapping.")
        return {}
    return data


def _normalize_url(value: object) -> object:
    """Strip whitespace and end the server URL with ``/``.

    Resource paths such as ``api/store/`` are appended to the web-app root,
    so ``https://host/labbcat`` and ``https://host/labbcat/`` are the same server.
    """
    if not isinstance(value, str):
        return value
    value = value.strip()
    if value and not value.endswith("/"):
        value += "/"
    return value


def _is_private(path: Path) -> bool:
    """True when only the owner may read *path* (always True on Windows)."""
    if os.name == "nt":
        return True
    return path.stat().st_mode & 0o077 == 0


class LabbcatConfig(BaseModel):
    """Server connection settings."""

    url: str = ""
    username: str | None = None
    password: str | None = None
    language: str | None = None

    normalize_url = field_validator("url", mode="before")(_normalize_url)

    @classmethod
    def _from_section(cls, data: dict[str, object]) -> LabbcatConfig:
        """Build from a raw YAML top-level dict (reads the ``labbcat`` key)."""
        section = data.get("labbcat", {})
        if not isinstance(section, dict):
            return cls()
        return cls(**{k: v for k, v in section.items() if k in cls.model_fields})

    @classmethod
    def from_file(cls, path: Path = CONFIG_PATH) -> LabbcatConfig:
        """Load config from a YAML file.  Returns empty config if file is missing."""
        if not path.is_file():
            return cls()
        logger.trace(f"Loading config from {path}")
        return cls._from_section(_load_raw_yaml(path))

    @classmethod
    def from_env(cls) -> LabbcatConfig:
        """Build config from environment variables."""
        return cls(
            url=os.environ.get("LABBCAT_URL", ""),
            username=os.environ.get("LABBCAT_USERNAME"),
            password=os.environ.get("LABBCAT_PASSWORD"),
            language=os.environ.get("LABBCAT_LANGUAGE"),
        )

    def merge(self, override: LabbcatConfig) -> LabbcatConfig:
        """Return a new config where *override* values take priority over self.

        Only non-empty / non-None values from *override* win.
        """
        return LabbcatConfig(
            url=override.url or self.url,
            username=override.username or self.username,
            password=override.password or self.password,
            language=override.language or self.language,
        )

    @classmethod
    def load(cls, config_path: Path | None = None) -> LabbcatConfig:
        """Merge file and env: file < env."""
        path = get_config_path(config_path)
        file_cfg = cls.from_file(path)
        if file_cfg.password and not _is_private(path):
            logger.warning(
                f"{path} holds a LaBB-CAT password and is readable by other users; "
                f"run: chmod 600 {path}"
            )
        return file_cfg.merge(cls.from_env())

    def save_to_file(self, path: Path = CONFIG_PATH, *, include_password: bool = True) -> Path:
        """Write the ``labbcat`` section, preserving other sections.

        A saved password is plain text, so the file is made owner-only.
        With ``include_password=False`` the password is left out and must come
        from ``LABBCAT_PASSWORD`` or a prompt at login.
        """
        path.parent.mkdir(parents=True, exist_ok=True)
        existing = _load_raw_yaml(path)
        exclude = None if include_password else {"password"}
        existing["labbcat"] = self.model_dump(exclude_none=True, exclude=exclude)
        content = yaml.safe_dump(existing, default_flow_style=False, sort_keys=False)
        path.write_text(content, encoding="utf-8")
        if include_password and self.password:
            path.chmod(0o600)
            logger.warning(f"LaBB-CAT password stored in plain text in {path}")
        logger.info(f"Config saved to {path}")
        return path

    def ensure_credentials(self) -> LabbcatConfig:
        """Prompt interactively for missing credentials.  Returns updated copy."""
        username = self.username
        password = self.password
        if not username:
            require_interactive("Set LABBCAT_USERNAME/LABBCAT_PASSWORD.")
            logger.info("No credentials configured. Enter your LaBB-CAT login:")
            username = input("Username: ")
        if not password:
            require_interactive("Set LABBCAT_PASSWORD.")
            password = getpass.getpass(f"Password for {username}: ")
        return self.model_copy(update={"username": username, "password": password})
