import unittest

from wikigate.gate.boundary import (
    ANONYMOUS,
    HEADER_AUTH_GRANTED_RIGHT,
    HEADER_AUTH_USER,
    HEADER_AUTH_USER_ID,
    CallerIdentity,
    ForwardedRequest,
    ForwardedRequestError,
    evaluate_gate,
    parse_forwarded,
)

ALICE = CallerIdentity(user_id=12, username="Alice", rights=frozenset())
CREATOR = CallerIdentity(user_id=13, username="Carol", rights=frozenset({"create-wiki"}))
ADMIN = CallerIdentity(user_id=1, username="Admin", rights=frozenset({"create-wiki", "manage-wiki-perms"}))


class TestParseForwarded(unittest.TestCase):
    def test_strips_query_and_defaults_method(self) -> None:
        req = parse_forwarded({"X-Forwarded-Uri": "/provisioner/v1/wikis/public?limit=5&offset=0"})
        self.assertEqual(req, ForwardedRequest(path="/provisioner/v1/wikis/public", method="GET"))

    def test_header_names_are_case_insensitive_and_method_upper_cased(self) -> None:
        req = parse_forwarded({"x-forwarded-uri": "/provisioner/v1/wikis", "x-forwarded-method": "post"})
        self.assertEqual(req.method, "POST")

    def test_missing_or_empty_uri_is_rejected(self) -> None:
        for headers in ({}, {"X-Forwarded-Uri": ""}, {"X-Forwarded-Uri": "?a=b"}, {"X-Forwarded-Method": "GET"}):
            with self.subTest(headers=headers):
                with self.assertRaises(ForwardedRequestError):
                    parse_forwarded(headers)


class TestEvaluateGate(unittest.TestCase):
    def _eval(self, path: str, method: str, caller: CallerIdentity):
        return evaluate_gate(ForwardedRequest(path=path, method=method), caller)

    def test_unknown_route_is_not_found_regardless_of_caller(self) -> None:
        for caller in (ANONYMOUS, ALICE, ADMIN):
            out = self._eval("/provisioner/v1/secret", "GET", caller)
            self.assertEqual(out.status, 404)
            self.assertEqual(out.error, "NOT_FOUND")
            self.assertIsNone(out.decision)
            self.assertEqual(out.headers, {})

    def test_login_required_rejects_anonymous_with_401(self) -> None:
        out = self._eval("/provisioner/v1/tasks/t-1/events", "GET", ANONYMOUS)
        self.assertEqual(out.status, 401)
        self.assertEqual(out.outcome, "UNAUTHORIZED")

    def test_missing_right_is_403(self) -> None:
        out = self._eval("/manage/v1/wikis/demo/permissions", "POST", CREATOR)
        self.assertEqual(out.status, 403)
        self.assertEqual(out.error, "FORBIDDEN")

    def test_anonymous_create_is_forbidden_not_unauthorized(self) -> None:
        out = self._eval("/provisioner/v1/wikis", "POST", ANONYMOUS)
        self.assertEqual(out.status, 403)

    def test_public_route_allows_anonymous_without_identity_headers(self) -> None:
        out = self._eval("/provisioner/v1/wikis/public", "GET", ANONYMOUS)
        self.assertTrue(out.allowed)
        self.assertEqual(out.headers, {})

    def test_allowed_response_carries_identity_and_checked_right(self) -> None:
        out = self._eval("/provisioner/v1/wikis", "POST", CREATOR)
        self.assertEqual(out.status, 200)
        self.assertEqual(
            out.headers,
            {HEADER_AUTH_USER: "Carol", HEADER_AUTH_USER_ID: "13", HEADER_AUTH_GRANTED_RIGHT: "create-wiki"},
        )

    def test_granted_right_header_only_when_a_right_was_checked(self) -> None:
        out = self._eval("/provisioner/v1/wikis/slug/demo/exists", "GET", ALICE)
        self.assertEqual(out.status, 200)
        self.assertNotIn(HEADER_AUTH_GRANTED_RIGHT, out.headers)
        self.assertEqual(out.headers[HEADER_AUTH_USER_ID], "12")

    def test_user_wikis_self_and_other(self) -> None:
        self.assertEqual(self._eval("/provisioner/v1/users/12/wikis", "GET", ALICE).status, 200)
        self.assertEqual(self._eval("/provisioner/v1/users/13/wikis", "GET", ALICE).status, 403)
        self.assertEqual(self._eval("/provisioner/v1/users/12/wikis", "GET", CREATOR).status, 200)
        self.assertEqual(self._eval("/provisioner/v1/users/12/wikis", "GET", ANONYMOUS).status, 401)

        own = self._eval("/provisioner/v1/users/12/wikis", "GET", ALICE)
        self.assertNotIn(HEADER_AUTH_GRANTED_RIGHT, own.headers)

    def test_identity_annotation_can_be_disabled(self) -> None:
        out = evaluate_gate(
            ForwardedRequest(path="/manage/v1/wikis/demo/permissions", method="GET"),
            ADMIN,
            annotate_identity=False,
        )
        self.assertEqual(out.status, 200)
        self.assertEqual(out.headers, {HEADER_AUTH_GRANTED_RIGHT: "manage-wiki-perms"})


if __name__ == "__main__":
    unittest.main()
