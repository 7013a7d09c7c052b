from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from wikigate.auth.config import load_auth_config
from wikigate.auth.rbac import load_rbac_config
from wikigate.config import load_config
from wikigate.observability.config import load_observability_config


@dataclass(frozen=True)
class ConfigReport:
    system_id: str
    config_sha256: str
    oidc_enabled: bool
    roles: tuple[str, ...]


def validate_config_file(*, path: Path) -> ConfigReport:
    """Load every config section; the first invalid one raises ValueError."""
    cfg = load_config(path=path)
    auth = load_auth_config(path=path)
    rbac = load_rbac_config(path=path)
    load_observability_config(path=path)
    return ConfigReport(
        system_id=cfg.system_id,
        config_sha256=cfg.config_sha256,
        oidc_enabled=auth.oidc.enabled,
        roles=tuple(sorted(rbac.role_mappings)),
    )
