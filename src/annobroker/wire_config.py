from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import yaml  # PyYAML
from dotenv import load_dotenv

from annobroker.adapters.http_transport import HttpTransport, HttpTransportConfig
from annobroker.adapters.transport import Transport
from annobroker.adapters.ui import ReloadPolicy, Waiter
from annobroker.core.broker import DEFAULT_PROTOCOL, Broker
from annobroker.core.dispatcher import Dispatcher


class ConfigError(ValueError):
    pass


@dataclass
class BrokerConfig:
    url: str = "ajax.cgi"
    protocol_version: int = DEFAULT_PROTOCOL
    name: str = "broker"
    timeout: float = 30.0
    history: int = 256


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    sec = data.get(key) or {}
    if not isinstance(sec, dict):
        raise ConfigError(f"'{key}' must be a mapping")
    return sec


def _env_overrides(cfg: BrokerConfig) -> BrokerConfig:
    load_dotenv()
    try:
        if os.getenv("ANNOBROKER_URL"):
            cfg.url = os.environ["ANNOBROKER_URL"]
        if os.getenv("ANNOBROKER_PROTOCOL"):
            cfg.protocol_version = int(os.environ["ANNOBROKER_PROTOCOL"])
        if os.getenv("ANNOBROKER_TIMEOUT"):
            cfg.timeout = float(os.environ["ANNOBROKER_TIMEOUT"])
    except ValueError as e:
        raise ConfigError(f"bad environment override: {e}") from e
    return cfg


def load_config(yaml_path: Optional[str] = None) -> BrokerConfig:
    """Read broker settings from YAML (optional), then apply ANNOBROKER_* env vars."""
    cfg = BrokerConfig()
    if yaml_path:
        try:
            data = yaml.safe_load(Path(yaml_path).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"cannot read {yaml_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{yaml_path}: top level must be a mapping")

        b = _section(data, "broker")
        t = _section(data, "transport")
        d = _section(data, "dispatcher")
        try:
            cfg.url = str(b.get("url", cfg.url))
            cfg.protocol_version = int(b.get("protocol_version", cfg.protocol_version))
            cfg.name = str(b.get("name", cfg.name))
            cfg.timeout = float(t.get("timeout", cfg.timeout))
            cfg.history = int(d.get("history", cfg.history))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"{yaml_path}: {e}") from e
    return _env_overrides(cfg)


def build_from_yaml(
    yaml_path: Optional[str] = None,
    *,
    transport: Optional[Transport] = None,
    waiter: Optional[Waiter] = None,
    reload_policy: Optional[ReloadPolicy] = None,
) -> Tuple[Dispatcher, Broker]:
    """Load the config and wire a dispatcher plus a broker registered on it."""
    cfg = load_config(yaml_path)
    dispatcher = Dispatcher(name=f"{cfg.name}.dispatcher", history=cfg.history)
    if transport is None:
        transport = HttpTransport(HttpTransportConfig(timeout=cfg.timeout))
    broker = Broker(
        dispatcher,
        transport,
        url=cfg.url,
        protocol_version=cfg.protocol_version,
        waiter=waiter,
        reload_policy=reload_policy,
        name=cfg.name,
    )
    return dispatcher, broker
