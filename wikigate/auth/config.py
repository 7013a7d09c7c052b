from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional, Sequence

from wikigate.config import (
    read_config_document,
    require_bool,
    require_dict,
    require_int,
    require_optional_str,
    require_str,
    require_str_list,
)

_DEFAULT_CLAIMS = {
    "user_id_claim": "user_id",
    "username_claim": "preferred_username",
    "roles_claim": "roles",
}


@dataclass(frozen=True)
class OIDCConfig:
    enabled: bool
    issuer_url: str
    audience: Optional[str]
    user_id_claim: str
    username_claim: str
    roles_claim: str
    role_name_map: dict[str, str]
    accepted_algorithms: Sequence[str]
    leeway_seconds: int
    http_timeout_seconds: int
    jwks_refetch_cooldown_seconds: int = 30


@dataclass(frozen=True)
class AuthConfig:
    oidc: OIDCConfig


def _role_name_map(obj: Any, *, path: str) -> dict[str, str]:
    if obj is None:
        return {}
    src = require_dict(obj, path=path)
    return {require_str(k, path=f"{path}.<key>"): require_str(v, path=f"{path}.{k}") for k, v in src.items()}


def load_auth_config(*, path: Path) -> AuthConfig:
    doc, _ = read_config_document(path=path)
    auth = require_dict(doc.get("auth"), path="auth")
    oidc = require_dict(auth.get("oidc"), path="auth.oidc")

    enabled = require_bool(oidc.get("enabled"), path="auth.oidc.enabled")
    issuer_url = require_str(oidc.get("issuer_url"), path="auth.oidc.issuer_url")
    if enabled and issuer_url.lower() == "disabled":
        raise ValueError("auth.oidc.enabled=true requires a real auth.oidc.issuer_url")

    claims = {
        key: require_str(oidc.get(key) or default, path=f"auth.oidc.{key}")
        for key, default in _DEFAULT_CLAIMS.items()
    }

    algorithms = tuple(require_str_list(oidc.get("accepted_algorithms"), path="auth.oidc.accepted_algorithms"))
    if not algorithms:
        raise ValueError("auth.oidc.accepted_algorithms must not be empty")
    if any(alg.lower() == "none" for alg in algorithms):
        raise ValueError("auth.oidc.accepted_algorithms must not allow unsigned tokens")

    return AuthConfig(
        oidc=OIDCConfig(
            enabled=enabled,
            issuer_url=issuer_url,
            audience=require_optional_str(oidc.get("audience"), path="auth.oidc.audience"),
            role_name_map=_role_name_map(oidc.get("role_name_map"), path="auth.oidc.role_name_map"),
            accepted_algorithms=algorithms,
            leeway_seconds=require_int(oidc.get("leeway_seconds"), path="auth.oidc.leeway_seconds", minimum=0),
            http_timeout_seconds=require_int(
                oidc.get("http_timeout_seconds"), path="auth.oidc.http_timeout_seconds", minimum=1
            ),
            jwks_refetch_cooldown_seconds=require_int(
                oidc.get("jwks_refetch_cooldown_seconds", 30), path="auth.oidc.jwks_refetch_cooldown_seconds", minimum=0
            ),
            **claims,
        )
    )


def dump_auth_config_debug(*, cfg: AuthConfig) -> str:
    """Return a JSON string safe to print next to a config validation report."""
    oidc = asdict(cfg.oidc)
    oidc["accepted_algorithms"] = list(cfg.oidc.accepted_algorithms)
    return json.dumps({"oidc": oidc}, ensure_ascii=False, sort_keys=True)
