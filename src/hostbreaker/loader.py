"""Manager config loader: YAML -> ManagerConfig with env/CLI overlays.

This module loads breaker configuration from YAML files and applies environment
variable and CLI overlays with precedence YAML → env → CLI.

Usage:
    import os
    from hostbreaker.loader import load_manager_config
    from hostbreaker.manager import BreakerManager

    cfg = load_manager_config(
        yaml_path=os.getenv("HOSTBREAKER_YAML"),
        env=os.environ,
        cli_host_overrides=[
            # --breaker api.example.com=failure:2,timeout:30
            "api.example.com=failure:2,timeout:30"
        ],
    )
    manager = BreakerManager.from_config(cfg)

YAML layout:
    defaults:
      failure_threshold: 5
      success_threshold: 3
      timeout_s: 60
      window_size_s: 300
    include_port: true
    common_hosts: [api.example.com, "localhost:3000"]
    hosts:
      api.example.com: {failure_threshold: 2, timeout_s: 30}
    advanced:
      lock_timeout_s: 5
      max_cached_hosts: 4096
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import yaml

from hostbreaker.breakers import BreakerConfig
from hostbreaker.keys import normalize_authority
from hostbreaker.manager import DEFAULT_LOCK_TIMEOUT_S, ManagerConfig

__all__ = (
    "ENV_PREFIX",
    "load_manager_config",
    "merge_manager_docs",
    "parse_kv_overrides",
)

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "HOSTBREAKER"

_FIELD_ALIASES = {
    "failure": "failure_threshold",
    "fail": "failure_threshold",
    "failure_threshold": "failure_threshold",
    "success": "success_threshold",
    "success_threshold": "success_threshold",
    "timeout": "timeout_s",
    "timeout_s": "timeout_s",
    "window": "window_size_s",
    "window_size": "window_size_s",
    "window_size_s": "window_size_s",
}
_INT_FIELDS = {"failure_threshold", "success_threshold"}


def _parse_bool(v: Any) -> bool:
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_int(v: Any) -> int:
    return int(str(v).strip().replace("_", ""))


def _maybe_int(v: Any) -> Optional[int]:
    if v is None or (isinstance(v, str) and v.strip().lower() in {"", "none", "null"}):
        return None
    return _parse_int(v)


def _maybe_float(v: Any) -> Optional[float]:
    if v is None or (isinstance(v, str) and v.strip().lower() in {"", "none", "null"}):
        return None
    return float(v)


def _split_list(s: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in s.split(",") if part.strip())


def parse_kv_overrides(s: str) -> Dict[str, str]:
    """
    Parse "failure:5,success:3,timeout:60,window:300" into a dict of raw
    strings. ``key=value`` pairs are accepted as well.
    """
    out: Dict[str, str] = {}
    if not s:
        return out
    for part in s.split(","):
        if not part.strip():
            continue
        sep = ":" if ":" in part else "="
        if sep not in part:
            raise ValueError(f"Invalid override item (expected key:value): {part!r}")
        k, v = part.split(sep, 1)
        out[k.strip().lower()] = v.strip()
    return out


def _merge_breaker_config(base: BreakerConfig, raw: Mapping[str, Any]) -> BreakerConfig:
    """Merge overrides (aliases allowed) into ``base``; unknown keys are rejected."""
    updates: Dict[str, Any] = {}
    for k, v in raw.items():
        name = _FIELD_ALIASES.get(str(k).strip().lower())
        if name is None:
            raise ValueError(f"Unknown breaker setting: {k}")
        updates[name] = _parse_int(v) if name in _INT_FIELDS else float(v)
    return replace(base, **updates)


def _load_yaml(path: Optional[str | Path]) -> Dict[str, Any]:
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Breaker YAML not found: {p}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Breaker YAML root must be a mapping: {p}")
    return data


def merge_manager_docs(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deep-merge config documents; ``defaults``/``hosts``/``advanced`` merge per key."""
    result: Dict[str, Any] = dict(base)
    for key, value in (override or {}).items():
        if key in {"defaults", "advanced"} and isinstance(value, Mapping):
            merged = dict(result.get(key) or {})
            merged.update(value)
            result[key] = merged
        elif key == "hosts" and isinstance(value, Mapping):
            hosts = dict(result.get("hosts") or {})
            for host, hvals in value.items():
                entry = dict(hosts.get(host) or {})
                entry.update(hvals or {})
                hosts[host] = entry
            result["hosts"] = hosts
        else:
            result[key] = value
    return result


def _config_from_doc(doc: Mapping[str, Any]) -> ManagerConfig:
    defaults = _merge_breaker_config(BreakerConfig(), doc.get("defaults") or {})

    hosts: Dict[str, BreakerConfig] = {}
    for host, hvals in (doc.get("hosts") or {}).items():
        hosts[normalize_authority(str(host), include_port=True)] = _merge_breaker_config(
            defaults, hvals or {}
        )

    common = doc.get("common_hosts") or ()
    if isinstance(common, str):
        common = _split_list(common)

    advanced = doc.get("advanced") or {}
    lock_timeout = advanced.get("lock_timeout_s", DEFAULT_LOCK_TIMEOUT_S)

    return ManagerConfig(
        defaults=defaults,
        include_port=_parse_bool(doc.get("include_port", True)),
        common_hosts=tuple(str(h) for h in common),
        hosts=hosts,
        lock_timeout_s=_maybe_float(lock_timeout),
        max_cached_hosts=_maybe_int(advanced.get("max_cached_hosts")),
    )


# ------------------------------
# Env + CLI overlays
# ------------------------------


def _apply_host_override(cfg: ManagerConfig, host_raw: str, settings: str) -> ManagerConfig:
    host = normalize_authority(host_raw, include_port=True)
    base = cfg.hosts.get(host, cfg.defaults)
    hosts_map = dict(cfg.hosts)
    hosts_map[host] = _merge_breaker_config(base, parse_kv_overrides(settings))
    return replace(cfg, hosts=hosts_map)


def _apply_env_overlays(cfg: ManagerConfig, env: Mapping[str, str]) -> ManagerConfig:
    """
    Supported envs:
      HOSTBREAKER_DEFAULTS="failure:5,success:3,timeout:60,window:300"
      HOSTBREAKER__<HOST>=failure:2,timeout:30
      HOSTBREAKER_INCLUDE_PORT=true
      HOSTBREAKER_COMMON_HOSTS="api.example.com,localhost:3000"
      HOSTBREAKER_LOCK_TIMEOUT=5
      HOSTBREAKER_MAX_CACHED_HOSTS=4096
    """
    new_cfg = cfg

    if s := env.get(f"{ENV_PREFIX}_DEFAULTS"):
        new_cfg = replace(
            new_cfg, defaults=_merge_breaker_config(new_cfg.defaults, parse_kv_overrides(s))
        )

    if (s := env.get(f"{ENV_PREFIX}_INCLUDE_PORT")) is not None:
        new_cfg = replace(new_cfg, include_port=_parse_bool(s))

    if (s := env.get(f"{ENV_PREFIX}_COMMON_HOSTS")) is not None:
        new_cfg = replace(new_cfg, common_hosts=_split_list(s))

    if (s := env.get(f"{ENV_PREFIX}_LOCK_TIMEOUT")) is not None:
        new_cfg = replace(new_cfg, lock_timeout_s=_maybe_float(s))

    if (s := env.get(f"{ENV_PREFIX}_MAX_CACHED_HOSTS")) is not None:
        new_cfg = replace(new_cfg, max_cached_hosts=_maybe_int(s))

    prefix = f"{ENV_PREFIX}__"
    for k, v in env.items():
        if not k.startswith(prefix):
            continue
        new_cfg = _apply_host_override(new_cfg, k[len(prefix) :], v)

    return new_cfg


def _apply_cli_overrides(
    cfg: ManagerConfig,
    *,
    cli_defaults_override: Optional[str],
    cli_host_overrides: Sequence[str] | None,
    cli_include_port: Optional[bool],
    cli_common_hosts: Sequence[str] | None,
) -> ManagerConfig:
    """
    CLI formats:
      --breaker-defaults "failure:5,timeout:60"
      --breaker HOST=failure:2,timeout:30
      --include-port / --no-include-port
      --common-host HOST (repeatable)
    """
    new_cfg = cfg

    if cli_defaults_override:
        new_cfg = replace(
            new_cfg,
            defaults=_merge_breaker_config(
                new_cfg.defaults, parse_kv_overrides(cli_defaults_override)
            ),
        )

    for item in cli_host_overrides or ():
        if "=" not in item:
            raise ValueError(f"Invalid --breaker item (expected HOST=...): {item}")
        host_raw, settings = item.split("=", 1)
        new_cfg = _apply_host_override(new_cfg, host_raw, settings)

    if cli_include_port is not None:
        new_cfg = replace(new_cfg, include_port=cli_include_port)

    if cli_common_hosts:
        new_cfg = replace(new_cfg, common_hosts=tuple(cli_common_hosts))

    return new_cfg


def _validate(cfg: ManagerConfig) -> None:
    if cfg.lock_timeout_s is not None and cfg.lock_timeout_s <= 0:
        raise ValueError("lock_timeout_s must be >0 (or unset to wait forever)")
    if cfg.max_cached_hosts is not None and cfg.max_cached_hosts < 1:
        raise ValueError("max_cached_hosts must be >=1 if set")


# ------------------------------
# Public entrypoint
# ------------------------------


def load_manager_config(
    yaml_path: Optional[str | Path],
    *,
    env: Mapping[str, str],
    cli_defaults_override: Optional[str] = None,
    cli_host_overrides: Sequence[str] | None = None,
    cli_include_port: Optional[bool] = None,
    cli_common_hosts: Sequence[str] | None = None,
    base_doc: Optional[Mapping[str, Any]] = None,
) -> ManagerConfig:
    """
    Load manager configuration with precedence:
      base_doc -> YAML (if provided) -> env overlays -> CLI overlays.

    - Host keys are canonicalized (lowercase punycode, default ports dropped).
    - Breaker settings are validated by ``BreakerConfig`` (thresholds >=1,
      durations >=0); invalid values raise ``ValueError``.
    """
    doc: Dict[str, Any] = {}
    if base_doc:
        doc = merge_manager_docs(doc, base_doc)
    doc = merge_manager_docs(doc, _load_yaml(yaml_path))

    cfg = _config_from_doc(doc)
    cfg = _apply_env_overlays(cfg, env)
    cfg = _apply_cli_overrides(
        cfg,
        cli_defaults_override=cli_defaults_override,
        cli_host_overrides=cli_host_overrides,
        cli_include_port=cli_include_port,
        cli_common_hosts=cli_common_hosts,
    )
    _validate(cfg)

    LOGGER.debug(
        "Loaded breaker config",
        extra={
            "include_port": cfg.include_port,
            "hosts": sorted(cfg.hosts),
            "common_hosts": list(cfg.common_hosts),
        },
    )
    return cfg
