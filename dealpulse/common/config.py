"""
Configuration Management for DealPulse

Loads configuration from ~/.dealpulse/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field
from typing import Dict, List

from .schemas.stall import AlertChannel

logger = logging.getLogger("dealpulse.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".dealpulse"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOGS_DIR = CONFIG_DIR / "logs"
CONFIRMATIONS_PATH = CONFIG_DIR / "confirmations.json"

DEFAULT_ACTION_URL_TEMPLATE = "https://salesforce.com/lightning/r/Opportunity/{deal_id}/view"


@dataclass
class EngineConfig:
    """Stage engine and action router configuration"""
    high_confidence_threshold: float = 0.8
    medium_confidence_threshold: float = 0.5
    enable_auto_update: bool = True
    enable_flagging: bool = True
    strict_min_confidence: bool = False  # require a relevant signal before a minConfidence gate passes
    signal_weights: Dict[str, float] = field(default_factory=dict)


@dataclass
class ScoringConfig:
    """Stall scoring configuration"""
    time_decay_half_life_hours: float = 48
    max_signal_age_hours: float = 168  # 7 days
    critical_threshold: float = 80
    high_threshold: float = 60
    medium_threshold: float = 40
    context_radius: int = 100
    patterns_path: str = ""  # empty = built-in pattern table


@dataclass
class AlertConfig:
    """Alert generation and delivery configuration"""
    alert_within_hours: float = 24
    alert_expiration_hours: float = 72
    enabled_channels: List[str] = field(default_factory=lambda: ["WEBHOOK"])
    escalate_to_both_on_critical: bool = True
    webhook_url: str = ""
    webhook_secret: str = ""
    slack_webhook_url: str = ""
    smtp_host: str = ""
    smtp_port: int = 25
    email_from_address: str = ""
    recipient_email_domain: str = "company.com"
    action_url_template: str = DEFAULT_ACTION_URL_TEMPLATE


@dataclass
class AuditConfig:
    """Audit log configuration"""
    retention_days: int = 90
    enable_rollback: bool = True
    log_path: str = ""  # JSONL mirror, disabled when empty
    fail_closed: bool = False


@dataclass
class CrmConfig:
    """CRM REST adapter configuration"""
    base_url: str = ""
    api_token: str = ""
    timeout_seconds: float = 10.0


@dataclass
class ServerConfig:
    """HTTP server configuration"""
    port: int = 8090
    webhook_secret: str = ""


@dataclass
class DealPulseConfig:
    """Main DealPulse configuration"""
    engine: EngineConfig = field(default_factory=EngineConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)
    crm: CrmConfig = field(default_factory=CrmConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_engine_config(data: dict) -> EngineConfig:
    """Parse engine section from config dict"""
    engine_data = data.get("engine", {})
    return EngineConfig(
        high_confidence_threshold=engine_data.get("high_confidence_threshold", 0.8),
        medium_confidence_threshold=engine_data.get("medium_confidence_threshold", 0.5),
        enable_auto_update=engine_data.get("enable_auto_update", True),
        enable_flagging=engine_data.get("enable_flagging", True),
        strict_min_confidence=engine_data.get("strict_min_confidence", False),
        signal_weights=dict(engine_data.get("signal_weights", {})),
    )


def _parse_scoring_config(data: dict) -> ScoringConfig:
    """Parse scoring section from config dict"""
    scoring_data = data.get("scoring", {})
    return ScoringConfig(
        time_decay_half_life_hours=scoring_data.get("time_decay_half_life_hours", 48),
        max_signal_age_hours=scoring_data.get("max_signal_age_hours", 168),
        critical_threshold=scoring_data.get("critical_threshold", 80),
        high_threshold=scoring_data.get("high_threshold", 60),
        medium_threshold=scoring_data.get("medium_threshold", 40),
        context_radius=scoring_data.get("context_radius", 100),
        patterns_path=scoring_data.get("patterns_path", ""),
    )


def _known_channels(names) -> List[str]:
    """Normalize channel names, dropping any that are not an AlertChannel"""
    known = []
    for name in names:
        name = str(name).strip().upper()
        if not name:
            continue
        try:
            known.append(AlertChannel(name).value)
        except ValueError:
            logger.warning("Ignoring unknown alert channel %s", name)
    return known


def _parse_alert_config(data: dict) -> AlertConfig:
    """Parse alerts section from config dict"""
    alert_data = data.get("alerts", {})
    return AlertConfig(
        alert_within_hours=alert_data.get("alert_within_hours", 24),
        alert_expiration_hours=alert_data.get("alert_expiration_hours", 72),
        enabled_channels=_known_channels(alert_data.get("enabled_channels", ["WEBHOOK"])),
        escalate_to_both_on_critical=alert_data.get("escalate_to_both_on_critical", True),
        webhook_url=alert_data.get("webhook_url", ""),
        webhook_secret=alert_data.get("webhook_secret", ""),
        slack_webhook_url=alert_data.get("slack_webhook_url", ""),
        smtp_host=alert_data.get("smtp_host", ""),
        smtp_port=alert_data.get("smtp_port", 25),
        email_from_address=alert_data.get("email_from_address", ""),
        recipient_email_domain=alert_data.get("recipient_email_domain", "company.com"),
        action_url_template=alert_data.get("action_url_template", DEFAULT_ACTION_URL_TEMPLATE),
    )


def _parse_audit_config(data: dict) -> AuditConfig:
    """Parse audit section from config dict"""
    audit_data = data.get("audit", {})
    return AuditConfig(
        retention_days=audit_data.get("retention_days", 90),
        enable_rollback=audit_data.get("enable_rollback", True),
        log_path=audit_data.get("log_path", ""),
        fail_closed=audit_data.get("fail_closed", False),
    )


def _parse_crm_config(data: dict) -> CrmConfig:
    """Parse crm section from config dict"""
    crm_data = data.get("crm", {})
    return CrmConfig(
        base_url=crm_data.get("base_url", ""),
        api_token=crm_data.get("api_token", ""),
        timeout_seconds=crm_data.get("timeout_seconds", 10.0),
    )


def _parse_server_config(data: dict) -> ServerConfig:
    """Parse server section from config dict"""
    server_data = data.get("server", {})
    return ServerConfig(
        port=server_data.get("port", 8090),
        webhook_secret=server_data.get("webhook_secret", ""),
    )


def load_config(config_path: Path = None) -> DealPulseConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.dealpulse/config.json)
    3. Default values
    """
    config = DealPulseConfig()
    path = config_path or CONFIG_PATH

    # Load from config file if exists
    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)

            config.engine = _parse_engine_config(data)
            config.scoring = _parse_scoring_config(data)
            config.alerts = _parse_alert_config(data)
            config.audit = _parse_audit_config(data)
            config.crm = _parse_crm_config(data)
            config.server = _parse_server_config(data)
        except (json.JSONDecodeError, IOError, AttributeError) as e:
            logger.warning("Failed to load config file %s: %s", path, e)

    # Environment variable overrides
    if os.getenv("DEALPULSE_HIGH_CONFIDENCE"):
        config.engine.high_confidence_threshold = float(os.getenv("DEALPULSE_HIGH_CONFIDENCE"))
    if os.getenv("DEALPULSE_MEDIUM_CONFIDENCE"):
        config.engine.medium_confidence_threshold = float(os.getenv("DEALPULSE_MEDIUM_CONFIDENCE"))
    if os.getenv("DEALPULSE_AUTO_UPDATE"):
        config.engine.enable_auto_update = _parse_bool(os.getenv("DEALPULSE_AUTO_UPDATE"))
    if os.getenv("DEALPULSE_FLAGGING"):
        config.engine.enable_flagging = _parse_bool(os.getenv("DEALPULSE_FLAGGING"))

    if os.getenv("STALL_DECAY_HALF_LIFE_HOURS"):
        config.scoring.time_decay_half_life_hours = float(os.getenv("STALL_DECAY_HALF_LIFE_HOURS"))
    if os.getenv("STALL_MAX_SIGNAL_AGE_HOURS"):
        config.scoring.max_signal_age_hours = float(os.getenv("STALL_MAX_SIGNAL_AGE_HOURS"))
    if os.getenv("STALL_CRITICAL_THRESHOLD"):
        config.scoring.critical_threshold = float(os.getenv("STALL_CRITICAL_THRESHOLD"))
    if os.getenv("STALL_HIGH_THRESHOLD"):
        config.scoring.high_threshold = float(os.getenv("STALL_HIGH_THRESHOLD"))
    if os.getenv("STALL_MEDIUM_THRESHOLD"):
        config.scoring.medium_threshold = float(os.getenv("STALL_MEDIUM_THRESHOLD"))

    if os.getenv("ALERT_WITHIN_HOURS"):
        config.alerts.alert_within_hours = float(os.getenv("ALERT_WITHIN_HOURS"))
    if os.getenv("ALERT_EXPIRATION_HOURS"):
        config.alerts.alert_expiration_hours = float(os.getenv("ALERT_EXPIRATION_HOURS"))
    if os.getenv("ALERT_CHANNELS"):
        config.alerts.enabled_channels = _known_channels(os.getenv("ALERT_CHANNELS").split(","))
    if os.getenv("ALERT_ESCALATE_CRITICAL"):
        config.alerts.escalate_to_both_on_critical = _parse_bool(os.getenv("ALERT_ESCALATE_CRITICAL"))

    if os.getenv("AUDIT_RETENTION_DAYS"):
        config.audit.retention_days = int(os.getenv("AUDIT_RETENTION_DAYS"))
    if os.getenv("AUDIT_LOG_PATH"):
        config.audit.log_path = os.getenv("AUDIT_LOG_PATH")
    if os.getenv("AUDIT_FAIL_CLOSED"):
        config.audit.fail_closed = _parse_bool(os.getenv("AUDIT_FAIL_CLOSED"))

    if os.getenv("DEALPULSE_PORT"):
        config.server.port = int(os.getenv("DEALPULSE_PORT"))

    # Secrets: track env-sourced keys so save_config never persists them
    _env_secret_map = {
        "ALERT_WEBHOOK_URL": ("alerts", "webhook_url"),
        "ALERT_WEBHOOK_SECRET": ("alerts", "webhook_secret"),
        "SLACK_WEBHOOK_URL": ("alerts", "slack_webhook_url"),
        "CRM_BASE_URL": ("crm", "base_url"),
        "CRM_API_TOKEN": ("crm", "api_token"),
        "CALL_WEBHOOK_SECRET": ("server", "webhook_secret"),
    }
    for env_var, (section, attr) in _env_secret_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(getattr(config, section), attr, val)
            config._env_sourced_keys.add(f"{section}.{attr}")

    return config


def save_config(config: DealPulseConfig, config_path: Path = None) -> None:
    """Save configuration to file.

    Secret fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    path = config_path or CONFIG_PATH
    path.parent.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    def _secret(key: str, value: str) -> str:
        return "" if key in env_sourced else value

    data = {
        "engine": {
            "high_confidence_threshold": config.engine.high_confidence_threshold,
            "medium_confidence_threshold": config.engine.medium_confidence_threshold,
            "enable_auto_update": config.engine.enable_auto_update,
            "enable_flagging": config.engine.enable_flagging,
            "strict_min_confidence": config.engine.strict_min_confidence,
            "signal_weights": config.engine.signal_weights,
        },
        "scoring": {
            "time_decay_half_life_hours": config.scoring.time_decay_half_life_hours,
            "max_signal_age_hours": config.scoring.max_signal_age_hours,
            "critical_threshold": config.scoring.critical_threshold,
            "high_threshold": config.scoring.high_threshold,
            "medium_threshold": config.scoring.medium_threshold,
            "context_radius": config.scoring.context_radius,
            "patterns_path": config.scoring.patterns_path,
        },
        "alerts": {
            "alert_within_hours": config.alerts.alert_within_hours,
            "alert_expiration_hours": config.alerts.alert_expiration_hours,
            "enabled_channels": config.alerts.enabled_channels,
            "escalate_to_both_on_critical": config.alerts.escalate_to_both_on_critical,
            "webhook_url": _secret("alerts.webhook_url", config.alerts.webhook_url),
            "webhook_secret": _secret("alerts.webhook_secret", config.alerts.webhook_secret),
            "slack_webhook_url": _secret("alerts.slack_webhook_url", config.alerts.slack_webhook_url),
            "smtp_host": config.alerts.smtp_host,
            "smtp_port": config.alerts.smtp_port,
            "email_from_address": config.alerts.email_from_address,
            "recipient_email_domain": config.alerts.recipient_email_domain,
            "action_url_template": config.alerts.action_url_template,
        },
        "audit": {
            "retention_days": config.audit.retention_days,
            "enable_rollback": config.audit.enable_rollback,
            "log_path": config.audit.log_path,
            "fail_closed": config.audit.fail_closed,
        },
        "crm": {
            "base_url": _secret("crm.base_url", config.crm.base_url),
            "api_token": _secret("crm.api_token", config.crm.api_token),
            "timeout_seconds": config.crm.timeout_seconds,
        },
        "server": {
            "port": config.server.port,
            "webhook_secret": _secret("server.webhook_secret", config.server.webhook_secret),
        },
    }

    with open(path, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    path.chmod(0o600)


def ensure_directories() -> None:
    """Ensure required directories exist"""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
