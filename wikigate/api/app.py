from __future__ import annotations

import argparse
import json
import time
from dataclasses import dataclass
from http import HTTPStatus
from http.cookies import CookieError, SimpleCookie
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from wikigate.auth.config import AuthConfig, load_auth_config
from wikigate.auth.oidc import OIDCTokenValidationError, OidcJwtValidator
from wikigate.auth.rbac import RbacConfig, load_rbac_config
from wikigate.config import WikigateConfig, load_config
from wikigate.gate.boundary import (
    ANONYMOUS,
    CallerIdentity,
    ForwardedRequestError,
    evaluate_gate,
    parse_forwarded,
)
from wikigate.observability.config import ObservabilityConfig, load_observability_config
from wikigate.observability.metrics import observe_gate, render_prometheus
from wikigate.runtime.config import validate_config_file
from wikigate.runtime.health import liveness, readiness

AUTH_CHECK_PATH = "/auth/check"


@dataclass(frozen=True)
class ApiContext:
    config: WikigateConfig
    auth: AuthConfig
    rbac: RbacConfig
    oidc: OidcJwtValidator
    observability: ObservabilityConfig


def _make_handler(ctx: ApiContext):
    class Handler(BaseHTTPRequestHandler):
        def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
            return

        def _send_body(self, *, status: int, payload: bytes, content_type: str, extra_headers: Optional[dict[str, str]] = None) -> None:
            self.send_response(int(status))
            self.send_header("Content-Type", content_type)
            self.send_header("Content-Length", str(len(payload)))
            self.send_header("Cache-Control", "no-store")
            if extra_headers:
                for k, v in extra_headers.items():
                    self.send_header(k, v)
            self.end_headers()
            if self.command != "HEAD":
                self.wfile.write(payload)

        def _send_json(self, *, status: int, obj: Any, extra_headers: Optional[dict[str, str]] = None) -> None:
            payload = json.dumps(obj, ensure_ascii=False).encode("utf-8")
            self._send_body(
                status=status,
                payload=payload,
                content_type="application/json; charset=utf-8",
                extra_headers=extra_headers,
            )

        def _extract_token(self) -> Optional[str]:
            auth = self.headers.get("Authorization") or ""
            if auth.lower().startswith("bearer "):
                return auth.split(" ", 1)[1].strip() or None

            jar = SimpleCookie()
            try:
                jar.load(self.headers.get("Cookie") or "")
            except CookieError:
                return None
            morsel = jar.get(ctx.config.gate.session_cookie_name)
            return (morsel.value or None) if morsel is not None else None

        def _resolve_caller(self) -> CallerIdentity:
            if not ctx.auth.oidc.enabled:
                return ANONYMOUS

            token = self._extract_token()
            if token is None:
                return ANONYMOUS

            try:
                actor = ctx.oidc.validate_bearer_token(token=token)
            except OIDCTokenValidationError:
                # An unusable token is the same as no session: login-required routes answer 401.
                return ANONYMOUS
            return CallerIdentity(
                user_id=actor.user_id,
                username=actor.username,
                rights=ctx.rbac.rights_for_roles(actor.roles),
            )

        def _auth_check(self) -> None:
            started = time.monotonic()
            try:
                request = parse_forwarded(self.headers)
            except ForwardedRequestError:
                observe_gate(domain="", outcome="BAD_REQUEST", duration_ms=(time.monotonic() - started) * 1000.0)
                self._send_json(status=HTTPStatus.BAD_REQUEST, obj={"error": "BAD_REQUEST"})
                return

            caller = self._resolve_caller()
            outcome = evaluate_gate(request, caller, annotate_identity=ctx.config.gate.annotate_identity)
            observe_gate(
                domain=outcome.decision.domain if outcome.decision is not None else "",
                outcome=outcome.outcome,
                duration_ms=(time.monotonic() - started) * 1000.0,
            )

            if not outcome.allowed:
                self._send_json(status=outcome.status, obj={"error": outcome.error})
                return
            self._send_json(status=HTTPStatus.OK, obj={"ok": True}, extra_headers=outcome.headers)

        def _dispatch(self) -> None:
            path = urlparse(self.path).path

            if path == AUTH_CHECK_PATH:
                self._auth_check()
                return

            if self.command in ("GET", "HEAD") and path == "/healthz":
                self._send_json(status=HTTPStatus.OK, obj=liveness(component="wikigate-api").to_dict())
                return

            if self.command in ("GET", "HEAD") and path == "/readyz":
                report = readiness(component="wikigate-api", config=ctx.config, oidc_enabled=ctx.auth.oidc.enabled)
                self._send_json(status=HTTPStatus.OK, obj=report.to_dict())
                return

            if self.command == "GET" and path == "/metrics":
                if not ctx.observability.metrics_enabled:
                    self._send_json(status=HTTPStatus.NOT_FOUND, obj={"error": "NOT_FOUND"})
                    return
                payload, content_type = render_prometheus()
                self._send_body(status=HTTPStatus.OK, payload=payload, content_type=content_type)
                return

            self._send_json(status=HTTPStatus.NOT_FOUND, obj={"error": "NOT_FOUND"})

        # Forward-auth proxies may replay the original request method.
        def do_GET(self) -> None:  # noqa: N802 (BaseHTTPRequestHandler API)
            self._dispatch()

        def do_HEAD(self) -> None:  # noqa: N802
            self._dispatch()

        def do_POST(self) -> None:  # noqa: N802
            self._dispatch()

        def do_PUT(self) -> None:  # noqa: N802
            self._dispatch()

        def do_PATCH(self) -> None:  # noqa: N802
            self._dispatch()

        def do_DELETE(self) -> None:  # noqa: N802
            self._dispatch()

        def do_OPTIONS(self) -> None:  # noqa: N802
            self._dispatch()

    return Handler


def build_context(*, config_path: Path) -> ApiContext:
    auth = load_auth_config(path=config_path)
    return ApiContext(
        config=load_config(path=config_path),
        auth=auth,
        rbac=load_rbac_config(path=config_path),
        oidc=OidcJwtValidator(config=auth.oidc),
        observability=load_observability_config(path=config_path),
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="wikigate-api")
    parser.add_argument("--config", default="configs/dev.yaml", help="Config file (repo-relative unless absolute).")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", default=8090, type=int)
    parser.add_argument("--dry-run", action="store_true", help="Validate config and exit.")
    args = parser.parse_args(argv)

    repo_root = Path(__file__).resolve().parents[2]
    cfg_path = Path(args.config)
    cfg_path = cfg_path if cfg_path.is_absolute() else (repo_root / cfg_path)
    validate_config_file(path=cfg_path)

    if args.dry_run:
        print("WIKIGATE_API_DRY_RUN_OK")
        return 0

    ctx = build_context(config_path=cfg_path)
    server = ThreadingHTTPServer((str(args.host), int(args.port)), _make_handler(ctx))
    try:
        server.serve_forever(poll_interval=0.5)
    except KeyboardInterrupt:
        return 0
    finally:
        server.server_close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
