from __future__ import annotations

import hashlib
import hmac
import secrets

from uploadgate.core.config import get_settings


# 32 random bytes -> 256 bits of entropy, base64url encoded (43 chars).
TOKEN_BYTES = 32


def generate_token() -> str:
    # The raw secret leaves this process exactly once, inside the portal URL.
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(raw_token: str, *, pepper: str | None = None) -> str:
    # Key the digest with the server-held pepper so a leaked table cannot be brute-forced offline.
    resolved_pepper = pepper if pepper is not None else get_settings().upload_token_pepper
    return hmac.new(
        resolved_pepper.encode("utf-8"),
        raw_token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_token(raw_token: str, token_hash: str, *, pepper: str | None = None) -> bool:
    # Always re-derive and compare in constant time; there is no reverse path.
    candidate = hash_token(raw_token, pepper=pepper)
    return hmac.compare_digest(candidate, token_hash)
