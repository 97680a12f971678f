from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional

SALT_BYTES = 16


@dataclass(frozen=True)
class IssuedCode:
    code: str
    salt: str
    digest: str


def digest_code(code: str, salt: str) -> str:
    """HMAC-SHA256 keyed by the salt, hex encoded."""
    return hmac.new(salt.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


class CodeGenerator:
    """
    Produces fixed-length numeric codes and their salted digests.

    A ``fixed_code`` (dev mode) goes through exactly the same salting and
    hashing as a random one.
    """

    def __init__(self, length: int = 6, fixed_code: Optional[str] = None):
        if length < 1:
            raise ValueError("code length must be positive")
        self.length = length
        self.fixed_code = fixed_code

    def generate(self) -> str:
        if self.fixed_code is not None:
            return self.fixed_code
        return str(secrets.randbelow(10**self.length)).zfill(self.length)

    @staticmethod
    def new_salt() -> str:
        return secrets.token_hex(SALT_BYTES)

    def issue(self) -> IssuedCode:
        code = self.generate()
        salt = self.new_salt()
        return IssuedCode(code=code, salt=salt, digest=digest_code(code, salt))

    @staticmethod
    def matches(candidate: str, salt: str, expected_digest: str) -> bool:
        return hmac.compare_digest(digest_code(candidate, salt), expected_digest)


__all__ = ["CodeGenerator", "IssuedCode", "digest_code"]
