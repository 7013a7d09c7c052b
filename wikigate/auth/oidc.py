from __future__ import annotations

import json
import threading
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any, Optional

try:
    import jwt
except Exception as e:  # pragma: no cover
    raise RuntimeError("PyJWT is required for bearer token validation") from e

from wikigate.auth.config import OIDCConfig


class OIDCDiscoveryError(RuntimeError):
    pass


class OIDCTokenValidationError(RuntimeError):
    pass


@dataclass(frozen=True)
class OIDCProviderMetadata:
    issuer: str
    jwks_uri: str

    @classmethod
    def from_discovery(cls, doc: dict[str, Any], *, expected_issuer: str) -> "OIDCProviderMetadata":
        issuer = doc.get("issuer")
        jwks_uri = doc.get("jwks_uri")
        if not isinstance(issuer, str) or not issuer:
            raise OIDCDiscoveryError("discovery document has no issuer")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise OIDCDiscoveryError("discovery document has no jwks_uri")
        if issuer.rstrip("/") != expected_issuer:
            raise OIDCDiscoveryError(f"discovery issuer {issuer} does not match configured {expected_issuer}")
        return cls(issuer=issuer.rstrip("/"), jwks_uri=jwks_uri)


def _get_json(url: str, *, timeout_seconds: float) -> dict[str, Any]:
    req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json"})
    try:
        with urllib.request.urlopen(req, timeout=timeout_seconds) as resp:
            doc = json.loads(resp.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        raise OIDCDiscoveryError(f"HTTP {e.code} fetching {url}") from e
    except ValueError as e:
        raise OIDCDiscoveryError(f"invalid JSON from {url}") from e
    except Exception as e:
        raise OIDCDiscoveryError(f"failed to fetch {url}: {type(e).__name__}: {e}") from e
    if not isinstance(doc, dict):
        raise OIDCDiscoveryError(f"expected a JSON object from {url}")
    return doc


def claim_at(claims: dict[str, Any], dotted: str) -> Any:
    """Resolve a dotted claim path such as ``realm_access.roles``; missing segments give None."""
    node: Any = claims
    for seg in dotted.split("."):
        if not seg:
            raise ValueError(f"invalid claim path: {dotted!r}")
        if not isinstance(node, dict):
            return None
        node = node.get(seg)
    return node


def wiki_user_id(value: Any) -> Optional[int]:
    # JSON numbers or digit strings; wiki user ids start at 1.
    if isinstance(value, str) and value.isdigit():
        value = int(value)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        return None
    return value


@dataclass(frozen=True)
class AuthenticatedActor:
    user_id: int
    username: str
    roles: tuple[str, ...]
    claims: dict[str, Any]


class SigningKeyCache:
    """The issuer's JWKS keyed by ``kid``.

    A token naming an unknown ``kid`` refetches the key set, at most once per
    ``refetch_cooldown_seconds``; the first lookup always fetches.
    """

    def __init__(self, *, jwks_uri: str, timeout_seconds: float, refetch_cooldown_seconds: float) -> None:
        self._jwks_uri = jwks_uri
        self._timeout_seconds = timeout_seconds
        self._cooldown = refetch_cooldown_seconds
        self._lock = threading.Lock()
        self._keys: dict[str, jwt.PyJWK] = {}
        self._fetched_at: Optional[float] = None

    def _refresh(self) -> None:
        doc = _get_json(self._jwks_uri, timeout_seconds=self._timeout_seconds)
        try:
            key_set = jwt.PyJWKSet.from_dict(doc)
        except jwt.PyJWTError as e:
            raise OIDCDiscoveryError(f"unusable JWKS from {self._jwks_uri}: {type(e).__name__}") from e
        self._keys = {k.key_id or "": k for k in key_set.keys}
        self._fetched_at = time.monotonic()

    def key_for(self, kid: Optional[str]) -> jwt.PyJWK:
        name = kid or ""
        with self._lock:
            if name not in self._keys and (
                self._fetched_at is None or time.monotonic() - self._fetched_at >= self._cooldown
            ):
                self._refresh()
            key = self._keys.get(name)
        if key is None:
            raise OIDCTokenValidationError(f"no signing key for kid {kid!r}")
        return key


class OidcJwtValidator:
    """Validates bearer JWTs against the issuer's signing keys.

    Discovery runs on first use; the resulting key cache is shared by every request thread.
    """

    def __init__(self, *, config: OIDCConfig) -> None:
        self._config = config
        self._issuer = config.issuer_url.rstrip("/")
        self._lock = threading.Lock()
        self._key_cache: Optional[SigningKeyCache] = None

    def _signing_keys(self) -> SigningKeyCache:
        with self._lock:
            if self._key_cache is None:
                doc = _get_json(
                    self._issuer + "/.well-known/openid-configuration",
                    timeout_seconds=float(self._config.http_timeout_seconds),
                )
                meta = OIDCProviderMetadata.from_discovery(doc, expected_issuer=self._issuer)
                self._key_cache = SigningKeyCache(
                    jwks_uri=meta.jwks_uri,
                    timeout_seconds=float(self._config.http_timeout_seconds),
                    refetch_cooldown_seconds=float(self._config.jwks_refetch_cooldown_seconds),
                )
            return self._key_cache

    def _decode(self, token: str) -> dict[str, Any]:
        try:
            kid = jwt.get_unverified_header(token).get("kid")
            key = self._signing_keys().key_for(kid if isinstance(kid, str) else None).key
        except (OIDCDiscoveryError, jwt.PyJWTError) as e:
            raise OIDCTokenValidationError(f"unable to resolve signing key: {type(e).__name__}") from e

        try:
            return jwt.decode(
                token,
                key,
                algorithms=list(self._config.accepted_algorithms),
                audience=self._config.audience,
                issuer=self._issuer,
                leeway=self._config.leeway_seconds,
                options={"require": ["exp", "iss"], "verify_aud": self._config.audience is not None},
            )
        except jwt.PyJWTError as e:
            raise OIDCTokenValidationError(f"invalid token: {type(e).__name__}") from e

    def _roles(self, claims: dict[str, Any]) -> tuple[str, ...]:
        raw = claim_at(claims, self._config.roles_claim)
        if isinstance(raw, str):
            raw = [raw]
        if not isinstance(raw, list):
            return ()
        names = {self._config.role_name_map.get(r, r) for r in raw if isinstance(r, str) and r}
        return tuple(sorted(names))

    def validate_bearer_token(self, *, token: str) -> AuthenticatedActor:
        if not self._config.enabled:
            raise OIDCTokenValidationError("OIDC disabled")
        if not token:
            raise OIDCTokenValidationError("empty token")

        claims = self._decode(token)

        user_id = wiki_user_id(claim_at(claims, self._config.user_id_claim))
        if user_id is None:
            raise OIDCTokenValidationError(f"missing or non-numeric user id claim: {self._config.user_id_claim}")
        username = claim_at(claims, self._config.username_claim)
        if not isinstance(username, str) or not username:
            raise OIDCTokenValidationError(f"missing username claim: {self._config.username_claim}")

        return AuthenticatedActor(user_id=user_id, username=username, roles=self._roles(claims), claims=claims)
