from __future__ import annotations

from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Mapping, Optional, Sequence

from wikigate.policy.matcher import DOMAINS, Decision, PolicyDomain, decide

HEADER_FORWARDED_URI = "X-Forwarded-Uri"
HEADER_FORWARDED_METHOD = "X-Forwarded-Method"
HEADER_AUTH_USER = "X-Auth-User"
HEADER_AUTH_USER_ID = "X-Auth-User-Id"
HEADER_AUTH_GRANTED_RIGHT = "X-Auth-Granted-Right"


class ForwardedRequestError(ValueError):
    pass


@dataclass(frozen=True)
class CallerIdentity:
    user_id: Optional[int]
    username: Optional[str]
    rights: frozenset[str] = frozenset()

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def has(self, right: str) -> bool:
        return right in self.rights


ANONYMOUS = CallerIdentity(user_id=None, username=None)


@dataclass(frozen=True)
class ForwardedRequest:
    path: str
    method: str


@dataclass(frozen=True)
class GateOutcome:
    status: int
    error: Optional[str]
    decision: Optional[Decision]
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def allowed(self) -> bool:
        return self.status == HTTPStatus.OK

    @property
    def outcome(self) -> str:
        return "ALLOWED" if self.error is None else self.error


def _header(headers: Mapping[str, str], name: str) -> str:
    name_l = name.lower()
    for k, v in headers.items():
        if str(k).lower() == name_l:
            return str(v)
    return ""


def parse_forwarded(headers: Mapping[str, str]) -> ForwardedRequest:
    uri = _header(headers, HEADER_FORWARDED_URI).strip()
    q = uri.find("?")
    if q != -1:
        uri = uri[:q]
    if not uri:
        raise ForwardedRequestError(f"missing {HEADER_FORWARDED_URI}")

    method = _header(headers, HEADER_FORWARDED_METHOD).strip().upper() or "GET"
    return ForwardedRequest(path=uri, method=method)


def evaluate_gate(
    request: ForwardedRequest,
    caller: CallerIdentity,
    *,
    annotate_identity: bool = True,
    domains: Sequence[PolicyDomain] = DOMAINS,
) -> GateOutcome:
    decision = decide(request.path, request.method, caller.user_id, domains=domains)
    if decision is None:
        return GateOutcome(status=HTTPStatus.NOT_FOUND, error="NOT_FOUND", decision=None)

    if decision.requires_login and not caller.is_authenticated:
        return GateOutcome(status=HTTPStatus.UNAUTHORIZED, error="UNAUTHORIZED", decision=decision)

    if decision.required_permission is not None and not caller.has(decision.required_permission):
        return GateOutcome(status=HTTPStatus.FORBIDDEN, error="FORBIDDEN", decision=decision)

    headers: dict[str, str] = {}
    if annotate_identity and caller.is_authenticated:
        headers[HEADER_AUTH_USER] = str(caller.username or "")
        headers[HEADER_AUTH_USER_ID] = str(caller.user_id)
    if decision.required_permission is not None:
        headers[HEADER_AUTH_GRANTED_RIGHT] = decision.required_permission
    return GateOutcome(status=HTTPStatus.OK, error=None, decision=decision, headers=headers)
