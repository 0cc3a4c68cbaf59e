"""
ESG-Lite authentication kernel.

Passwordless sign-in for end users and admin panel operators: WebAuthn
passkeys, one-time recovery codes and email magic links, backed by
server-side sessions and a role gate for admin operations.
"""

__version__ = "1.0.0"
