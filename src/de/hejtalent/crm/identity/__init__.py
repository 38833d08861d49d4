"""
Identity

Access token verification, role checks and recovery links backed by the hosted auth API.

Modules:
- auth.py: Token verification (local HS256 or remote lookup) and admin recovery links
- roles.py: Role gate used by admin-only endpoints
"""
