from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_password(raw_password: str, hashed_password: str) -> tuple[bool, str | None]:
    """Returns (valid, replacement_hash); the replacement is set when the stored hash uses outdated parameters."""
    return password_hash.verify_and_update(raw_password, hashed_password)
