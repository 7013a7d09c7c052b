#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from wikigate.auth.config import dump_auth_config_debug, load_auth_config
from wikigate.config import load_config
from wikigate.gate.boundary import CallerIdentity, ForwardedRequestError, evaluate_gate, parse_forwarded
from wikigate.observability.metrics import inc_task_notification, inc_task_stream
from wikigate.observability.task_event_log import FileTaskEventLog
from wikigate.policy.matcher import DOMAINS
from wikigate.policy.rules import lint_rules
from wikigate.runtime.config import validate_config_file
from wikigate.tasks.client import VISIBILITIES, ProvisionerClient, ProvisionerRequestError
from wikigate.tasks.reader import StreamConnectError, StreamExhaustedError, TaskNotification
from wikigate.version import read_repo_version

EXIT_TASK_FAILED = 1
EXIT_TASK_EXHAUSTED = 2
EXIT_TASK_CONNECT_FAILED = 3
EXIT_EVENT_LOG_FAILED = 4


def _resolve_repo_path(repo_root: Path, path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else (repo_root / p)


def cmd_version(args: argparse.Namespace) -> int:
    repo_root = Path(__file__).resolve().parent
    try:
        version = read_repo_version(repo_root=repo_root)
    except Exception as e:
        print(f"VERSION_FAILED: {e}")
        return 60
    print(version)
    return 0


def cmd_config_validate(args: argparse.Namespace) -> int:
    repo_root = Path(__file__).resolve().parent
    cfg_path = _resolve_repo_path(repo_root, args.config)
    try:
        report = validate_config_file(path=cfg_path)
    except Exception as e:
        print(f"CONFIG_VALIDATE_FAILED: {e}")
        return 60
    if args.show_auth:
        print(dump_auth_config_debug(cfg=load_auth_config(path=cfg_path)))
    print(f"system_id={report.system_id} {report.config_sha256} roles={','.join(report.roles)}")
    print("CONFIG_VALIDATE_OK")
    return 0


def cmd_policy_table(args: argparse.Namespace) -> int:
    doc = [
        {"domain": d.name, "prefix": d.prefix, "rules": [r.to_dict() for r in d.rules]}
        for d in DOMAINS
    ]
    print(json.dumps(doc, indent=2, ensure_ascii=False))
    return 0


def cmd_policy_lint(args: argparse.Namespace) -> int:
    errors: list[str] = []
    for d in DOMAINS:
        errors.extend(lint_rules(d.rules, path=d.name))
    if errors:
        print("POLICY_LINT_FAILED")
        for e in errors:
            print(e)
        return 1
    print("POLICY_LINT_OK")
    return 0


def cmd_policy_check(args: argparse.Namespace) -> int:
    headers = {"X-Forwarded-Uri": args.uri or ""}
    if args.method:
        headers["X-Forwarded-Method"] = args.method
    try:
        request = parse_forwarded(headers)
    except ForwardedRequestError as e:
        print(json.dumps({"status": 400, "error": "BAD_REQUEST", "detail": str(e)}))
        return 0

    if args.user_id is not None:
        caller = CallerIdentity(
            user_id=int(args.user_id),
            username=args.username or f"user{args.user_id}",
            rights=frozenset(args.right or ()),
        )
    else:
        caller = CallerIdentity(user_id=None, username=None, rights=frozenset(args.right or ()))

    outcome = evaluate_gate(request, caller)
    print(
        json.dumps(
            {
                "status": int(outcome.status),
                "error": outcome.error,
                "rule_id": outcome.decision.rule_id if outcome.decision is not None else None,
                "domain": outcome.decision.domain if outcome.decision is not None else None,
                "headers": dict(outcome.headers),
            },
            ensure_ascii=False,
        )
    )
    return 0


def _client_from_args(args: argparse.Namespace) -> ProvisionerClient:
    repo_root = Path(__file__).resolve().parent
    base_url = args.base_url
    http_timeout = 30.0
    read_timeout = 300.0
    if args.config:
        cfg = load_config(path=_resolve_repo_path(repo_root, args.config))
        base_url = base_url or cfg.provisioner.base_url
        http_timeout = cfg.provisioner.http_timeout_seconds
        read_timeout = cfg.provisioner.events_read_timeout_seconds
    if not base_url:
        raise ValueError("--base-url or --config is required")
    return ProvisionerClient(
        base_url=base_url,
        bearer_token=args.token,
        cookie=args.cookie,
        http_timeout_seconds=http_timeout,
        events_read_timeout_seconds=read_timeout,
    )


def _follow(client: ProvisionerClient, *, task_id: str, events_dir: Optional[str]) -> int:
    repo_root = Path(__file__).resolve().parent
    event_log = FileTaskEventLog(base_dir=_resolve_repo_path(repo_root, events_dir)) if events_dir else None

    def on_notification(note: TaskNotification) -> None:
        inc_task_notification(kind=note.kind)
        if event_log is not None:
            event_log.append(task_id=task_id, note=note)
        if note.kind == "progress" and note.parsed:
            line = f"[progress] status={note.status}"
            if note.phase:
                line += f" phase={note.phase}"
            if note.message:
                line += f" msg={note.message}"
            print(line)
        elif note.kind == "status" and note.parsed:
            print(
                json.dumps(
                    {"event": "status", "status": note.status, "wiki_id": note.wiki_id, "message": note.message},
                    indent=2,
                    ensure_ascii=False,
                )
            )
        else:
            print(f"[{note.event}] {note.data}")

    try:
        succeeded = client.follow_task(task_id, on_notification=on_notification)
    except StreamConnectError as e:
        inc_task_stream(outcome="connect_failed")
        print(f"TASK_CONNECT_FAILED: {e}", file=sys.stderr)
        return EXIT_TASK_CONNECT_FAILED
    except StreamExhaustedError as e:
        inc_task_stream(outcome="exhausted")
        print(f"TASK_STREAM_EXHAUSTED: {e}", file=sys.stderr)
        return EXIT_TASK_EXHAUSTED
    except OSError as e:
        inc_task_stream(outcome="event_log_failed")
        print(f"TASK_EVENT_LOG_FAILED: {e}", file=sys.stderr)
        return EXIT_EVENT_LOG_FAILED

    if succeeded:
        inc_task_stream(outcome="succeeded")
        print("TASK_SUCCEEDED")
        return 0
    inc_task_stream(outcome="failed")
    print("TASK_FAILED")
    return EXIT_TASK_FAILED


def cmd_task_follow(args: argparse.Namespace) -> int:
    client = _client_from_args(args)
    return _follow(client, task_id=args.task_id, events_dir=args.events_dir)


def cmd_wiki_create(args: argparse.Namespace) -> int:
    client = _client_from_args(args)
    try:
        task_id = client.create_wiki(
            name=args.name or f"Wiki {args.slug}",
            slug=args.slug,
            language=args.language,
            visibility=args.visibility,
        )
    except ProvisionerRequestError as e:
        print(f"WIKI_CREATE_FAILED: {e}", file=sys.stderr)
        if e.body:
            print(e.body, file=sys.stderr)
        return 1

    print(json.dumps({"slug": args.slug, "task_id": task_id, "sse": client.task_events_url(task_id)}, indent=2))
    if not args.follow:
        return 0
    return _follow(client, task_id=task_id, events_dir=args.events_dir)


def _add_client_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None, help="Config file supplying provisioner settings (repo-relative).")
    p.add_argument("--base-url", default=None, help="Public base URL in front of the provisioner.")
    p.add_argument("--token", default=None, help="Bearer token forwarded to the gate.")
    p.add_argument("--cookie", default=None, help="Raw Cookie header forwarded to the gate.")
    p.add_argument("--events-dir", default=None, help="Write task notifications as JSONL under this directory.")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="wikigatectl")
    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version")
    version.set_defaults(func=cmd_version)

    config = sub.add_parser("config")
    config_sub = config.add_subparsers(dest="config_command", required=True)

    cfg_validate = config_sub.add_parser("validate")
    cfg_validate.add_argument("--config", default="configs/dev.yaml", help="Config file (repo-relative).")
    cfg_validate.add_argument("--show-auth", action="store_true", help="Print the effective auth settings.")
    cfg_validate.set_defaults(func=cmd_config_validate)

    policy = sub.add_parser("policy")
    policy_sub = policy.add_subparsers(dest="policy_command", required=True)

    table = policy_sub.add_parser("table")
    table.set_defaults(func=cmd_policy_table)

    lint = policy_sub.add_parser("lint")
    lint.set_defaults(func=cmd_policy_lint)

    check = policy_sub.add_parser("check")
    check.add_argument("--uri", required=True, help="Forwarded URI, e.g. /provisioner/v1/wikis.")
    check.add_argument("--method", default=None, help="Forwarded method (default GET).")
    check.add_argument("--user-id", default=None, type=int, help="Caller user id; omit for an anonymous caller.")
    check.add_argument("--username", default=None)
    check.add_argument("--right", action="append", default=None, help="Right held by the caller (repeatable).")
    check.set_defaults(func=cmd_policy_check)

    wiki = sub.add_parser("wiki")
    wiki_sub = wiki.add_subparsers(dest="wiki_command", required=True)

    create = wiki_sub.add_parser("create")
    _add_client_args(create)
    create.add_argument("--slug", required=True)
    create.add_argument("--name", default=None)
    create.add_argument("--language", default="en")
    create.add_argument("--visibility", default="public", choices=VISIBILITIES)
    create.add_argument("--follow", action="store_true", help="Follow the task event stream to completion.")
    create.set_defaults(func=cmd_wiki_create)

    task = sub.add_parser("task")
    task_sub = task.add_subparsers(dest="task_command", required=True)

    follow = task_sub.add_parser("follow")
    _add_client_args(follow)
    follow.add_argument("--task-id", required=True)
    follow.set_defaults(func=cmd_task_follow)

    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
