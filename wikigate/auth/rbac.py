from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from wikigate.config import read_config_document, require_dict, require_str

_RIGHT_RE = re.compile(r"^[a-z][a-z0-9-]{0,63}$")


def _rights(obj: Any, *, path: str) -> frozenset[str]:
    if not isinstance(obj, list):
        raise ValueError(f"{path} must be a list of rights")
    bad = [idx for idx, r in enumerate(obj) if not isinstance(r, str) or _RIGHT_RE.match(r) is None]
    if bad:
        raise ValueError(f"{path}[{bad[0]}] must be a lower-case right name")
    return frozenset(obj)


@dataclass(frozen=True)
class RbacConfig:
    role_mappings: dict[str, frozenset[str]]

    def rights_for_roles(self, roles: Iterable[str]) -> frozenset[str]:
        """Union of the rights of every known role; unknown roles grant nothing."""
        granted: frozenset[str] = frozenset()
        for role in roles:
            granted |= self.role_mappings.get(role, frozenset())
        return granted


def load_rbac_config(*, path: Path) -> RbacConfig:
    doc, _ = read_config_document(path=path)
    rbac = require_dict(doc.get("rbac"), path="rbac")
    mappings = require_dict(rbac.get("role_mappings"), path="rbac.role_mappings")
    if not mappings:
        raise ValueError("rbac.role_mappings must define at least one role")

    return RbacConfig(
        role_mappings={
            require_str(role, path="rbac.role_mappings.<role>"): _rights(rights, path=f"rbac.role_mappings.{role}")
            for role, rights in mappings.items()
        }
    )
