import contextlib
import io
import json
import tempfile
import unittest
from pathlib import Path

import wikigatectl
from tests.provisioner_test_server import TaskScript, run_provisioner_test_server


def _run(argv: list[str]) -> tuple[int, str, str]:
    out, err = io.StringIO(), io.StringIO()
    with contextlib.redirect_stdout(out), contextlib.redirect_stderr(err):
        rc = wikigatectl.main(argv)
    return rc, out.getvalue(), err.getvalue()


class TestCtlConfigAndPolicy(unittest.TestCase):
    def test_version_matches_version_file(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]
        rc, out, _ = _run(["version"])
        self.assertEqual(rc, 0)
        self.assertEqual(out.strip(), (repo_root / "VERSION").read_text(encoding="utf-8").strip())

    def test_pyproject_version_matches_version_file(self) -> None:
        repo_root = Path(__file__).resolve().parents[1]
        pyproject = (repo_root / "pyproject.toml").read_text(encoding="utf-8")
        version = (repo_root / "VERSION").read_text(encoding="utf-8").strip()
        self.assertIn(f'version = "{version}"', pyproject)

    def test_config_validate_dev(self) -> None:
        rc, out, _ = _run(["config", "validate", "--config", "configs/dev.yaml", "--show-auth"])
        self.assertEqual(rc, 0)
        self.assertIn("CONFIG_VALIDATE_OK", out)
        self.assertIn('"user_id_claim": "user_id"', out)
        self.assertIn("system_id=wikigate-dev sha256:", out)
        self.assertIn("roles=creator,user,wiki_admin", out)

    def test_config_validate_reports_broken_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "broken.yaml"
            p.write_text("system_id: x\n", encoding="utf-8")
            rc, out, _ = _run(["config", "validate", "--config", str(p)])
        self.assertEqual(rc, 60)
        self.assertIn("CONFIG_VALIDATE_FAILED", out)

    def test_policy_lint_is_clean(self) -> None:
        rc, out, _ = _run(["policy", "lint"])
        self.assertEqual(rc, 0)
        self.assertIn("POLICY_LINT_OK", out)

    def test_policy_table_lists_both_domains(self) -> None:
        rc, out, _ = _run(["policy", "table"])
        self.assertEqual(rc, 0)
        doc = json.loads(out)
        self.assertEqual([d["prefix"] for d in doc], ["/provisioner/v1", "/manage/v1"])

    def test_policy_check(self) -> None:
        rc, out, _ = _run(["policy", "check", "--uri", "/provisioner/v1/wikis", "--method", "post"])
        self.assertEqual(rc, 0)
        res = json.loads(out)
        self.assertEqual((res["status"], res["error"]), (403, "FORBIDDEN"))

        rc, out, _ = _run(
            [
                "policy",
                "check",
                "--uri",
                "/manage/v1/wikis/demo/permissions",
                "--user-id",
                "7",
                "--username",
                "Dana",
                "--right",
                "manage-wiki-perms",
            ]
        )
        res = json.loads(out)
        self.assertEqual(res["status"], 200)
        self.assertEqual(res["headers"]["X-Auth-User"], "Dana")
        self.assertEqual(res["headers"]["X-Auth-Granted-Right"], "manage-wiki-perms")

        rc, out, _ = _run(["policy", "check", "--uri", "?only=query"])
        self.assertEqual(json.loads(out)["status"], 400)


class TestCtlTaskCommands(unittest.TestCase):
    def test_wiki_create_and_follow(self) -> None:
        with run_provisioner_test_server() as srv, tempfile.TemporaryDirectory() as td:
            srv.scripts["task-0001"] = TaskScript(
                chunks=[
                    b'event: progress\ndata: {"phase":"search","message":"indexing"}\n\n',
                    b'event: status\ndata: {"status":"succeeded","wiki_id":3}\n\n',
                ],
                hold_open=True,
            )
            rc, out, _ = _run(
                ["wiki", "create", "--base-url", srv.base_url, "--slug", "demo", "--follow", "--events-dir", td]
            )
            self.assertEqual(rc, 0)
            self.assertIn('"task_id": "task-0001"', out)
            self.assertIn("[progress] status=progress phase=search msg=indexing", out)
            self.assertIn("TASK_SUCCEEDED", out)
            self.assertEqual(srv.created[0]["name"], "Wiki demo")
            self.assertTrue((Path(td) / "tasks" / "task-0001.jsonl").is_file())

    def test_wiki_create_conflict(self) -> None:
        with run_provisioner_test_server() as srv:
            rc, _, err = _run(["wiki", "create", "--base-url", srv.base_url, "--slug", "taken"])
        self.assertEqual(rc, 1)
        self.assertIn("WIKI_CREATE_FAILED", err)

    def test_task_follow_exit_codes(self) -> None:
        with run_provisioner_test_server() as srv:
            srv.scripts["t-failed"] = TaskScript(chunks=[b'event: status\ndata: {"status":"failed"}\n\n'])
            srv.scripts["t-short"] = TaskScript(chunks=[b'event: progress\ndata: {"phase":"copy"}\n\n'])
            srv.scripts["t-down"] = TaskScript(chunks=[], status=503)

            cases = (("t-failed", 1, "TASK_FAILED"), ("t-short", 2, ""), ("t-down", 3, ""), ("missing", 3, ""))
            for task_id, expected_rc, marker in cases:
                with self.subTest(task_id=task_id):
                    rc, out, _ = _run(["task", "follow", "--base-url", srv.base_url, "--task-id", task_id])
                    self.assertEqual(rc, expected_rc)
                    self.assertIn(marker, out)

    def test_unwritable_event_log_is_not_reported_as_exhaustion(self) -> None:
        with run_provisioner_test_server() as srv, tempfile.TemporaryDirectory() as td:
            srv.scripts["t-ok"] = TaskScript(chunks=[b'event: status\ndata: {"status":"succeeded"}\n\n'])
            blocker = Path(td) / "not-a-dir"
            blocker.write_text("", encoding="utf-8")
            rc, out, err = _run(
                ["task", "follow", "--base-url", srv.base_url, "--task-id", "t-ok", "--events-dir", str(blocker)]
            )
        self.assertEqual(rc, 4)
        self.assertIn("TASK_EVENT_LOG_FAILED", err)
        self.assertNotIn("TASK_STREAM_EXHAUSTED", err)


if __name__ == "__main__":
    unittest.main()
