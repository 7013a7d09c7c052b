from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

RIGHT_CREATE_WIKI = "create-wiki"
RIGHT_MANAGE_WIKI_PERMS = "manage-wiki-perms"

PLACEHOLDER_PATTERNS: dict[str, str] = {
    "slug": r"[a-z0-9-]{1,120}",
    "user_id": r"[0-9]+",
    "task_id": r"[A-Za-z0-9-]+",
}

_PLACEHOLDER_RE = re.compile(r"\{([a-z_]+)\}")

PermissionWaiver = Callable[[Mapping[str, str], Optional[int]], bool]


def compile_path_pattern(pattern: str) -> re.Pattern[str]:
    if not pattern.startswith("/"):
        raise ValueError(f"path pattern must start with '/': {pattern}")

    out: list[str] = []
    pos = 0
    for m in _PLACEHOLDER_RE.finditer(pattern):
        name = m.group(1)
        segment = PLACEHOLDER_PATTERNS.get(name)
        if segment is None:
            raise ValueError(f"unknown placeholder {{{name}}} in path pattern: {pattern}")
        out.append(re.escape(pattern[pos : m.start()]))
        out.append(f"(?P<{name}>{segment})")
        pos = m.end()
    out.append(re.escape(pattern[pos:]))
    return re.compile("".join(out))


@dataclass(frozen=True)
class RouteRule:
    rule_id: str
    method: str
    path_pattern: str
    requires_login: bool
    required_permission: Optional[str] = None
    permission_waiver: Optional[PermissionWaiver] = None
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.rule_id:
            raise ValueError("rule_id must be non-empty")
        if not self.method or self.method != self.method.upper():
            raise ValueError(f"{self.rule_id}: method must be a non-empty upper-case string")
        if self.permission_waiver is not None and self.required_permission is None:
            raise ValueError(f"{self.rule_id}: permission_waiver without required_permission")
        object.__setattr__(self, "_compiled", compile_path_pattern(self.path_pattern))

    def match(self, *, path: str, method: str) -> Optional[dict[str, str]]:
        """Return the captured placeholders when both method and path match, else None."""
        if method.upper() != self.method:
            return None
        m = self._compiled.fullmatch(path)
        if m is None:
            return None
        return m.groupdict()

    def permission_for(self, *, params: Mapping[str, str], caller_id: Optional[int]) -> Optional[str]:
        if self.required_permission is None:
            return None
        if self.permission_waiver is not None and self.permission_waiver(params, caller_id):
            return None
        return self.required_permission

    def to_dict(self) -> dict[str, object]:
        return {
            "rule_id": self.rule_id,
            "method": self.method,
            "path_pattern": self.path_pattern,
            "requires_login": self.requires_login,
            "required_permission": self.required_permission,
            "identity_relative": self.permission_waiver is not None,
        }


def path_user_is_caller(params: Mapping[str, str], caller_id: Optional[int]) -> bool:
    if caller_id is None:
        return False
    raw = params.get("user_id")
    if raw is None or not raw.isdigit():
        return False
    return int(raw) == caller_id


PROVISION_RULES: tuple[RouteRule, ...] = (
    RouteRule(
        rule_id="PROVISION_CREATE_WIKI",
        method="POST",
        path_pattern="/wikis",
        requires_login=False,
        required_permission=RIGHT_CREATE_WIKI,
    ),
    RouteRule(
        rule_id="PROVISION_LIST_PUBLIC",
        method="GET",
        path_pattern="/wikis/public",
        requires_login=False,
    ),
    # Probing slugs leaks which wikis exist, so it needs a session.
    RouteRule(
        rule_id="PROVISION_SLUG_EXISTS",
        method="GET",
        path_pattern="/wikis/slug/{slug}/exists",
        requires_login=True,
    ),
    RouteRule(
        rule_id="PROVISION_LIST_LEGACY",
        method="GET",
        path_pattern="/wikis",
        requires_login=False,
    ),
    RouteRule(
        rule_id="PROVISION_USER_WIKIS",
        method="GET",
        path_pattern="/users/{user_id}/wikis",
        requires_login=True,
        required_permission=RIGHT_CREATE_WIKI,
        permission_waiver=path_user_is_caller,
    ),
    RouteRule(
        rule_id="PROVISION_TASK_EVENTS",
        method="GET",
        path_pattern="/tasks/{task_id}/events",
        requires_login=True,
    ),
)

# Viewing shares the update permission; no create-wiki fallback for reads.
MANAGE_RULES: tuple[RouteRule, ...] = (
    RouteRule(
        rule_id="MANAGE_VIEW_PERMISSIONS",
        method="GET",
        path_pattern="/wikis/{slug}/permissions",
        requires_login=True,
        required_permission=RIGHT_MANAGE_WIKI_PERMS,
    ),
    RouteRule(
        rule_id="MANAGE_UPDATE_PERMISSIONS",
        method="POST",
        path_pattern="/wikis/{slug}/permissions",
        requires_login=True,
        required_permission=RIGHT_MANAGE_WIKI_PERMS,
    ),
)


def lint_rules(rules: tuple[RouteRule, ...], *, path: str) -> list[str]:
    errors: list[str] = []
    seen: dict[tuple[str, str], str] = {}
    seen_ids: set[str] = set()
    for idx, rule in enumerate(rules):
        if rule.rule_id in seen_ids:
            errors.append(f"{path}[{idx}].rule_id: duplicate {rule.rule_id}")
        seen_ids.add(rule.rule_id)

        key = (rule.method, rule.path_pattern)
        if key in seen:
            errors.append(f"{path}[{idx}]: unreachable, shadowed by {seen[key]}")
        else:
            seen[key] = rule.rule_id
    return errors
