"""Forward-auth route policy.

Each policy domain (provisioning, management) owns an ordered table of route rules.
The first rule whose method and path pattern match decides what the caller needs.
"""
