from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from wikigate.policy.rules import MANAGE_RULES, PROVISION_RULES, RouteRule


@dataclass(frozen=True)
class PolicyDomain:
    name: str
    prefix: str
    rules: tuple[RouteRule, ...]

    def strip(self, path: str) -> Optional[str]:
        """Return the path below this domain's prefix, or None when the prefix does not apply."""
        if path == self.prefix:
            return "/"
        if path.startswith(self.prefix + "/"):
            return path[len(self.prefix) :]
        return None


PROVISION = PolicyDomain(name="provision", prefix="/provisioner/v1", rules=PROVISION_RULES)
MANAGE = PolicyDomain(name="manage", prefix="/manage/v1", rules=MANAGE_RULES)

DOMAINS: tuple[PolicyDomain, ...] = (PROVISION, MANAGE)


@dataclass(frozen=True)
class Decision:
    requires_login: bool
    required_permission: Optional[str]
    rule_id: str
    domain: str


def classify(path: str, *, domains: Sequence[PolicyDomain] = DOMAINS) -> Optional[tuple[PolicyDomain, str]]:
    for domain in domains:
        rest = domain.strip(path)
        if rest is not None:
            return domain, rest
    return None


def match_rules(
    rules: Sequence[RouteRule],
    *,
    path: str,
    method: str,
    caller_id: Optional[int],
    domain: str = "",
) -> Optional[Decision]:
    if path == "":
        path = "/"
    for rule in rules:
        params = rule.match(path=path, method=method)
        if params is None:
            continue
        return Decision(
            requires_login=rule.requires_login,
            required_permission=rule.permission_for(params=params, caller_id=caller_id),
            rule_id=rule.rule_id,
            domain=domain,
        )
    return None


def decide(
    path: str,
    method: str,
    caller_id: Optional[int],
    *,
    domains: Sequence[PolicyDomain] = DOMAINS,
) -> Optional[Decision]:
    """Classify a forwarded path into a policy domain and match it against that domain's rules.

    Returns None when the path lies outside every domain or no rule in the domain matches.
    """
    classified = classify(path, domains=domains)
    if classified is None:
        return None
    domain, rest = classified
    return match_rules(domain.rules, path=rest, method=method, caller_id=caller_id, domain=domain.name)
