"""
Configuration: environment variables and optional config file (JSON).
CLI arguments override config file override env vars.
"""
import json
import logging
import os
from typing import Any

logger = logging.getLogger("mailposture.config")

OUTPUT_FORMATS = ("json", "markdown", "all", "none")


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.environ.get(name, "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _env_float(name: str, default: float | None = None) -> float | None:
    v = os.environ.get(name, "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        logger.warning("Environment variable %s has invalid value %r; ignoring.", name, v)
        return default


def _split_servers(value: Any) -> list[str] | None:
    """'8.8.8.8, 1.1.1.1' or ['8.8.8.8'] -> ['8.8.8.8', '1.1.1.1']; empty -> None."""
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value]
    else:
        return None
    servers = [s.strip() for s in items if s and s.strip()]
    return servers or None


def load_env_config() -> dict[str, Any]:
    """Load configuration from environment variables (MAILPOSTURE_*)."""
    return {
        "verbose": _env_bool("MAILPOSTURE_VERBOSE", False),
        "output_dir": os.environ.get("MAILPOSTURE_OUTPUT_DIR", "").strip() or None,
        "output_format": os.environ.get("MAILPOSTURE_FORMAT", "").strip().lower() or "json",
        "quiet": _env_bool("MAILPOSTURE_QUIET", False),
        "log_file": os.environ.get("MAILPOSTURE_LOG_FILE", "").strip() or None,
        "scan_timeout_seconds": _env_float("MAILPOSTURE_TIMEOUT"),
        "dns_timeout": _env_float("MAILPOSTURE_DNS_TIMEOUT"),
        "nameservers": _split_servers(os.environ.get("MAILPOSTURE_NAMESERVERS", "")),
        "dkim_selector": os.environ.get("MAILPOSTURE_DKIM_SELECTOR", "").strip() or None,
    }


def load_file_config(path: str) -> dict[str, Any]:
    """Load configuration from a JSON file. Returns empty dict on error."""
    if not path or not os.path.isfile(path):
        return {}
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            return {}
        # Map common keys to our names
        mapping = {
            "verbose": "verbose",
            "output_dir": "output_dir",
            "output_directory": "output_dir",
            "format": "output_format",
            "output_format": "output_format",
            "quiet": "quiet",
            "log_file": "log_file",
            "timeout": "scan_timeout_seconds",
            "scan_timeout": "scan_timeout_seconds",
            "dns_timeout": "dns_timeout",
            "nameservers": "nameservers",
            "dns_servers": "nameservers",
            "selector": "dkim_selector",
            "dkim_selector": "dkim_selector",
        }
        out = {}
        for k, v in data.items():
            key = mapping.get(k, k)
            if key in ("verbose", "quiet"):
                out[key] = bool(v)
            elif key in ("output_dir", "log_file", "dkim_selector"):
                out[key] = str(v).strip() if v else None
            elif key == "output_format":
                fmt = str(v).strip().lower() if v else ""
                if fmt in OUTPUT_FORMATS:
                    out[key] = fmt
                else:
                    logger.warning("Config key %s has invalid value %r; skipping.", key, v)
            elif key in ("scan_timeout_seconds", "dns_timeout"):
                try:
                    out[key] = float(v) if v is not None else None
                except (TypeError, ValueError):
                    logger.warning("Config key %s has invalid value %r; skipping.", key, v)
            elif key == "nameservers":
                out[key] = _split_servers(v)
        return out
    except (OSError, json.JSONDecodeError):
        return {}


def merge_config(env: dict[str, Any], file_cfg: dict[str, Any], cli: dict[str, Any]) -> dict[str, Any]:
    """Merge env (base), then file, then CLI. CLI overrides all."""
    out = dict(env)
    for k, v in file_cfg.items():
        if v is not None:
            out[k] = v
    for k, v in cli.items():
        if v is not None:
            out[k] = v
    return out
