from __future__ import annotations

from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    if not raw_password:
        raise ValueError('Password is required')
    return password_hash.hash(raw_password)


def check_password(raw_password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Return (valid, new_hash); new_hash is set when the stored hash uses outdated parameters."""
    return password_hash.verify_and_update(raw_password, hashed_password)
