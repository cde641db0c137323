# deskledger/utils/config.py
"""Configuration management with YAML loading and dotted-key access."""

import os
from dataclasses import dataclass

import yaml
from dotenv import load_dotenv

ENV_PREFIX = "DESKLEDGER_"

DEFAULTS = {
    "database": {
        "url": "sqlite:///./deskledger.db",
    },
    "ledger": {
        "business_timezone": "Asia/Dubai",
        "balance_tolerance": 1e-6,
        "reprocess_on_receipt_change": True,
    },
    "positions": {
        "allow_short_sell": True,
    },
    "logging": {
        "level": "INFO",
        "file": None,
        "max_bytes": 10485760,
        "backup_count": 5,
    },
}


def _merge(base: dict, override: dict) -> dict:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Singleton configuration manager."""

    _instance = None

    def __init__(self, config_path=None, data=None):
        load_dotenv()
        self._config_path = config_path or os.environ.get(ENV_PREFIX + "CONFIG", "config.yaml")
        self._data = {}
        self._load(data)

    def _load(self, data=None):
        loaded = {}
        if data is not None:
            loaded = data
        elif os.path.exists(self._config_path):
            with open(self._config_path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        self._data = _merge(DEFAULTS, loaded)

    @classmethod
    def get_instance(cls, config_path=None):
        if cls._instance is None:
            cls._instance = cls(config_path)
        return cls._instance

    def get(self, dotted_key, default=None):
        """Access nested config values: config.get('ledger.balance_tolerance')."""
        value = self._data
        for key in dotted_key.split("."):
            if isinstance(value, dict):
                value = value.get(key)
            else:
                value = None
            if value is None:
                break

        # Environment variable override
        env_key = ENV_PREFIX + dotted_key.upper().replace(".", "_")
        env_val = os.environ.get(env_key)
        if env_val is not None:
            if isinstance(value, bool):
                return env_val.lower() in ("true", "1", "yes")
            elif isinstance(value, int):
                return int(env_val)
            elif isinstance(value, float):
                return float(env_val)
            return env_val

        return default if value is None else value

    def reload(self):
        """Reload config from disk."""
        self._load()


@dataclass(frozen=True)
class LedgerSettings:
    """Behavioural switches the ledger services read from the unit of work."""
    business_timezone: str = "Asia/Dubai"
    balance_tolerance: float = 1e-6
    allow_short_sell: bool = True
    reprocess_on_receipt_change: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "LedgerSettings":
        return cls(
            business_timezone=config.get("ledger.business_timezone", cls.business_timezone),
            balance_tolerance=float(config.get("ledger.balance_tolerance", cls.balance_tolerance)),
            allow_short_sell=bool(config.get("positions.allow_short_sell", cls.allow_short_sell)),
            reprocess_on_receipt_change=bool(
                config.get("ledger.reprocess_on_receipt_change", cls.reprocess_on_receipt_change)
            ),
        )
