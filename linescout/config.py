"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. Explicit path (``--config`` CLI flag or LINESCOUT_CONFIG_PATH)
2. ./linescout.yaml (working directory)
3. ~/.linescout/config.yaml (user home)

Environment variables override YAML: LINESCOUT_<SECTION>_<KEY>, e.g.
``LINESCOUT_PAYSTACK_SECRET_KEY`` or ``LINESCOUT_QUICK_HUMAN_WINDOW_MINUTES``.
${VAR} references in YAML values resolve from environment at load time.

Business settings that admins edit at runtime (commission percent, payout
minimum) live in the database instead; see services.settings_service.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "LINESCOUT_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """HTTP server settings for ``linescout serve``."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"
    allowed_origins: list[str] = []

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [o.strip() for o in value.split(",") if o.strip()]
        return value


class QuickHumanConfig(BaseModel):
    """Budget and timing of quick-human escalations."""

    message_limit: int = 6
    window_minutes: int = 30
    cooldown_hours: int = 48


class SourcingFeeConfig(BaseModel):
    """Price of a paid sourcing project, per checkout provider."""

    paystack_amount_minor: int = 10_000_000
    paystack_currency: str = "NGN"
    paypal_amount_minor: int = 7_500
    paypal_currency: str = "GBP"


class PaystackConfig(BaseModel):
    """Paystack API credentials."""

    secret_key: str = ""
    base_url: str = "https://api.paystack.co"
    callback_url: str = ""


class PayPalConfig(BaseModel):
    """PayPal REST API credentials."""

    client_id: str = ""
    client_secret: str = ""
    environment: Literal["live", "sandbox"] = "sandbox"
    webhook_id: str = ""
    return_url: str = ""
    cancel_url: str = ""

    @property
    def base_url(self) -> str:
        if self.environment == "live":
            return "https://api-m.paypal.com"
        return "https://api-m.sandbox.paypal.com"


class GatewayConfig(BaseModel):
    """n8n workflow endpoints backing the AI assistant and notifications."""

    base_url: str = ""
    chat_path: str = "/webhook/linescout-chat"
    events_path: str = "/webhook/linescout-events"
    timeout_seconds: float = 45.0


class MailConfig(BaseModel):
    """SMTP relay for transactional mail."""

    host: str = ""
    port: int = 587
    username: str = ""
    password: str = ""
    from_address: str = "LineScout <no-reply@linescout.app>"
    use_tls: bool = True


class PushConfig(BaseModel):
    """Expo push notification endpoint."""

    url: str = "https://exp.host/--/api/v2/push/send"
    enabled: bool = True


class LineScoutConfig(BaseModel):
    """Top-level configuration for the LineScout service."""

    server: ServerConfig = ServerConfig()
    quick_human: QuickHumanConfig = QuickHumanConfig()
    sourcing_fee: SourcingFeeConfig = SourcingFeeConfig()
    paystack: PaystackConfig = PaystackConfig()
    paypal: PayPalConfig = PayPalConfig()
    gateway: GatewayConfig = GatewayConfig()
    mail: MailConfig = MailConfig()
    push: PushConfig = PushConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations."""
    candidates = [
        Path.cwd() / "linescout.yaml",
        Path.cwd() / "linescout.yml",
        Path.home() / ".linescout" / "config.yaml",
        Path.home() / ".linescout" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply LINESCOUT_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix so multi-word section names
    like ``quick_human`` are handled correctly.
    """
    known_sections = sorted(
        LineScoutConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if isinstance(section_data, dict):
            # Pydantic coerces numeric and boolean strings
            section_data[matched_field] = value
    return data


def load_config(config_path: str | None = None) -> LineScoutConfig:
    """Load LineScout configuration.

    Args:
        config_path: Explicit path to config file. If None, uses
            LINESCOUT_CONFIG_PATH or searches standard locations.

    Returns:
        Validated LineScoutConfig. Defaults plus env overrides when no
        file is found.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
    """
    config_path = config_path or os.environ.get("LINESCOUT_CONFIG_PATH") or None
    raw_data: dict[str, Any] = {}
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return LineScoutConfig(**data)


_config: LineScoutConfig | None = None


def get_config() -> LineScoutConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: LineScoutConfig | None) -> None:
    """Replace (or with None, reset) the process-wide configuration."""
    global _config
    _config = config
