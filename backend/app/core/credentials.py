# app/core/credentials.py
from __future__ import annotations

import re
import secrets
import unicodedata
from typing import Iterator

from app.core.roles import normalize_role

ROLE_USERNAME_PREFIX = {
    "super_admin": "sa",
    "owner": "own",
    "admin": "adm",
    "teacher": "tch",
    "staff": "stf",
    "student": "stu",
    "member": "usr",
}

USERNAME_MAX_LENGTH = 24
USERNAME_MAX_SUFFIX_ATTEMPTS = 50

# No look-alikes (0/O, 1/l/I) so the password can be read off a printout.
_PASSWORD_LOWER = "abcdefghjkmnpqrstuvwxyz"
_PASSWORD_UPPER = "ABCDEFGHJKLMNPQRSTUVWXYZ"
_PASSWORD_DIGITS = "23456789"
DEFAULT_PASSWORD_LENGTH = 12

INVITATION_TOKEN_BYTES = 32

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def _ascii_slug(value: str | None) -> str:
    if not value:
        return ""
    folded = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM_RE.sub("", folded.lower())


def build_username_base(first_name: str | None, last_name: str | None, role: str | None) -> str:
    """
    Role-prefixed abbreviation of the name, e.g. ("John", "Smith", "student") -> "stu.jsmith".
    Not unique on its own; see username_candidates().
    """
    prefix = ROLE_USERNAME_PREFIX.get(normalize_role(role), "usr")
    first = _ascii_slug(first_name)
    last = _ascii_slug(last_name)

    name = (first[:1] + last) if last else first
    if not name:
        name = "user"

    base = f"{prefix}.{name}"
    # leave room for a numeric suffix
    return base[: USERNAME_MAX_LENGTH - 4]


def username_candidates(base: str) -> Iterator[str]:
    """
    base, base1, base2, ... up to USERNAME_MAX_SUFFIX_ATTEMPTS, then random suffixes.
    """
    yield base
    for n in range(1, USERNAME_MAX_SUFFIX_ATTEMPTS + 1):
        yield f"{base}{n}"
    while True:
        yield f"{base}{secrets.randbelow(9000) + 1000}"


def generate_default_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    """
    Temporary one-time password; must be rotated on first login.
    Always contains at least one lower-case letter, upper-case letter and digit.
    """
    if length < 8:
        raise ValueError("default password length must be at least 8")

    alphabet = _PASSWORD_LOWER + _PASSWORD_UPPER + _PASSWORD_DIGITS
    chars = [
        secrets.choice(_PASSWORD_LOWER),
        secrets.choice(_PASSWORD_UPPER),
        secrets.choice(_PASSWORD_DIGITS),
    ]
    chars.extend(secrets.choice(alphabet) for _ in range(length - len(chars)))

    # Fisher-Yates with the CSPRNG so the guaranteed classes are not always first
    for i in range(len(chars) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        chars[i], chars[j] = chars[j], chars[i]
    return "".join(chars)


def generate_invitation_token() -> str:
    """
    256 bits from the CSPRNG, URL-safe. Nothing about the invitation (email,
    tenant, time) goes into it, so it cannot be derived from public metadata.
    """
    return secrets.token_urlsafe(INVITATION_TOKEN_BYTES)

