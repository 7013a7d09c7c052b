"""Caller identity for the forward-auth gate.

Bearer tokens (or the session cookie) are validated as OIDC JWTs; the token's roles are
mapped to wiki-farm rights through the RBAC section of the runtime YAML config.
"""
