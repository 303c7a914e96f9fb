from pwdlib import PasswordHash
from pwdlib.exceptions import UnknownHashError


password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str | None) -> bool:
    if not raw_password or not hashed_password:
        return False
    try:
        return password_hash.verify(raw_password, hashed_password)
    except UnknownHashError:
        return False


def rehash_if_needed(raw_password: str, hashed_password: str) -> str | None:
    """Return a fresh hash when the stored one uses outdated parameters."""
    try:
        valid, updated = password_hash.verify_and_update(raw_password, hashed_password)
    except UnknownHashError:
        return None
    return updated if valid else None
