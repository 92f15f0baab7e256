"""Opaque bearer tokens (invitations, sessions)"""

import hashlib
import secrets


def generate_token() -> str:
    """Generate a secure opaque token"""
    return secrets.token_urlsafe(32)


def hash_token(token: str) -> str:
    """Hash a token for storage"""
    return hashlib.sha256(token.encode()).hexdigest()
