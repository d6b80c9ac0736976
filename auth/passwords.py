"""
auth/passwords.py -- Password hashing with bcrypt.

Security design decisions:
  bcrypt is the right choice for low-entropy secrets (passwords) because its
  cost factor makes brute-force expensive. The cost is a parameter rather than
  a module constant so deployments tune it through BCRYPT_ROUNDS and tests can
  run at the minimum cost of 4.

  Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
  wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
  rejects with an explicit error.

  SessionAuthority keeps a dummy hash at the same cost and always runs
  verify_password(), even when the username does not exist or the account is
  disabled, so response time does not reveal which check failed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 10

# bcrypt only reads the first 72 bytes of its input. bcrypt 4.x truncates
# silently, 5.x raises; neither is acceptable for a stored credential.
MAX_PASSWORD_BYTES = 72


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValueError if the UTF-8 encoding is longer than MAX_PASSWORD_BYTES.
    """
    if len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    An empty or malformed hash never matches, and neither does a password
    longer than MAX_PASSWORD_BYTES (it could never have been stored).
    """
    if not hashed or len(plain.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False

