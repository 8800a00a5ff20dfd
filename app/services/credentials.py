"""Credentials for webhook-provisioned accounts.

Accounts created from a purchase get a random secret that nobody ever
sees: only its argon2 hash is stored, and the buyer sets a real password
through the separately authenticated reset flow.  Deriving the secret
from the email (or mailing it out) would let anyone who knows a buyer's
address sign in as them.
"""

from __future__ import annotations

import secrets

from argon2 import PasswordHasher

_ph = PasswordHasher()

CREDENTIAL_BYTES = 32


def generate_credential() -> str:
    return secrets.token_urlsafe(CREDENTIAL_BYTES)


def hash_credential(plain: str) -> str:
    if not plain:
        raise ValueError("credential must be non-empty")
    return _ph.hash(plain)


def new_credential_hash() -> str:
    """Hash of a fresh random credential; the plaintext is discarded."""
    return hash_credential(generate_credential())

