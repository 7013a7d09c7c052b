from __future__ import annotations

import json
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, HTTPServer
from threading import Thread
from typing import Any, Iterator, Optional

import jwt
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm


def _new_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@dataclass
class OidcTestServer:
    issuer_url: str
    keys: dict[str, rsa.RSAPrivateKey] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)

    def jwks(self) -> dict[str, Any]:
        with self.lock:
            out = []
            for kid, key in self.keys.items():
                jwk = json.loads(RSAAlgorithm.to_jwk(key.public_key()))
                jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
                out.append(jwk)
        return {"keys": out}

    def rotate_keys(self, *, kids: list[str]) -> None:
        with self.lock:
            self.keys = {kid: _new_key() for kid in kids}

    def issue_token(
        self,
        *,
        user_id: Any,
        username: str,
        roles: list[str],
        kid: Optional[str] = None,
        expires_in: int = 300,
        issuer: Optional[str] = None,
    ) -> str:
        with self.lock:
            if kid is None:
                kid = next(iter(self.keys))
            key = self.keys[kid]
        now = int(time.time())
        claims = {
            "iss": issuer or self.issuer_url,
            "sub": f"wiki-user-{user_id}",
            "user_id": user_id,
            "preferred_username": username,
            "roles": roles,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(claims, key, algorithm="RS256", headers={"kid": kid})


@contextmanager
def run_oidc_test_server() -> Iterator[OidcTestServer]:
    state: dict[str, OidcTestServer] = {}

    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            return

        def _send_json(self, obj: Any) -> None:
            payload = json.dumps(obj).encode("utf-8")
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        def do_GET(self) -> None:  # noqa: N802
            srv = state["server"]
            if self.path == "/.well-known/openid-configuration":
                self._send_json({"issuer": srv.issuer_url, "jwks_uri": srv.issuer_url + "/jwks"})
                return
            if self.path == "/jwks":
                self._send_json(srv.jwks())
                return
            self.send_response(404)
            self.end_headers()

    httpd = HTTPServer(("127.0.0.1", 0), Handler)
    host, port = httpd.server_address
    srv = OidcTestServer(issuer_url=f"http://{host}:{port}")
    srv.rotate_keys(kids=["kid1"])
    state["server"] = srv

    t = Thread(target=httpd.serve_forever, kwargs={"poll_interval": 0.05}, daemon=True)
    t.start()
    try:
        yield srv
    finally:
        httpd.shutdown()
        httpd.server_close()
        t.join(timeout=2)
