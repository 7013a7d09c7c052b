from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml


def read_config_document(*, path: Path) -> tuple[dict[str, Any], bytes]:
    """Load one YAML config file; every section loader starts from this mapping."""
    raw = path.read_bytes()
    doc = yaml.safe_load(raw.decode("utf-8"))
    return require_dict(doc, path="config"), raw


def require_dict(obj: Any, *, path: str) -> dict[str, Any]:
    if not isinstance(obj, dict):
        raise ValueError(f"{path} must be a mapping")
    return obj


def require_str(obj: Any, *, path: str) -> str:
    if not isinstance(obj, str) or not obj:
        raise ValueError(f"{path} must be a non-empty string")
    return obj


def require_optional_str(obj: Any, *, path: str) -> Optional[str]:
    return None if obj is None else require_str(obj, path=path)


def require_bool(obj: Any, *, path: str) -> bool:
    if not isinstance(obj, bool):
        raise ValueError(f"{path} must be a boolean")
    return obj


def require_int(obj: Any, *, path: str, minimum: Optional[int] = None) -> int:
    if isinstance(obj, bool) or not isinstance(obj, int):
        raise ValueError(f"{path} must be an integer")
    if minimum is not None and obj < minimum:
        raise ValueError(f"{path} must be >= {minimum}")
    return obj


def require_positive_number(obj: Any, *, path: str) -> float:
    if isinstance(obj, bool) or not isinstance(obj, (int, float)) or obj <= 0:
        raise ValueError(f"{path} must be a positive number")
    return float(obj)


def require_str_list(obj: Any, *, path: str) -> list[str]:
    if not isinstance(obj, list):
        raise ValueError(f"{path} must be a list")
    return [require_str(item, path=f"{path}[{idx}]") for idx, item in enumerate(obj)]


@dataclass(frozen=True)
class GateConfig:
    session_cookie_name: str
    annotate_identity: bool


@dataclass(frozen=True)
class ProvisionerConfig:
    base_url: str
    http_timeout_seconds: float
    events_read_timeout_seconds: float


@dataclass(frozen=True)
class WikigateConfig:
    system_id: str
    config_path: str
    config_sha256: str
    gate: GateConfig
    provisioner: ProvisionerConfig


def _load_gate(section: Any) -> GateConfig:
    gate = require_dict(section if section is not None else {}, path="gate")
    cookie_name = require_str(gate.get("session_cookie_name", "wikigate_access_token"), path="gate.session_cookie_name")
    if any(c in cookie_name for c in "=; \t\r\n"):
        raise ValueError("gate.session_cookie_name must be a valid cookie name")
    return GateConfig(
        session_cookie_name=cookie_name,
        annotate_identity=require_bool(gate.get("annotate_identity", True), path="gate.annotate_identity"),
    )


def _load_provisioner(section: Any) -> ProvisionerConfig:
    prov = require_dict(section, path="provisioner")
    base_url = require_str(prov.get("base_url"), path="provisioner.base_url")
    if not base_url.startswith(("http://", "https://")):
        raise ValueError("provisioner.base_url must be an http(s) URL")
    return ProvisionerConfig(
        base_url=base_url.rstrip("/"),
        http_timeout_seconds=require_positive_number(
            prov.get("http_timeout_seconds", 30), path="provisioner.http_timeout_seconds"
        ),
        events_read_timeout_seconds=require_positive_number(
            prov.get("events_read_timeout_seconds", 300), path="provisioner.events_read_timeout_seconds"
        ),
    )


def load_config(*, path: Path) -> WikigateConfig:
    doc, raw = read_config_document(path=path)
    return WikigateConfig(
        system_id=require_str(doc.get("system_id"), path="system_id"),
        config_path=path.as_posix(),
        config_sha256="sha256:" + hashlib.sha256(raw).hexdigest(),
        gate=_load_gate(doc.get("gate")),
        provisioner=_load_provisioner(doc.get("provisioner")),
    )
