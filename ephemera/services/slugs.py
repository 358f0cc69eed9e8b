import secrets

# 9 bytes -> 12 base64url characters, 72 bits of randomness.
SLUG_BYTES = 9


def new_slug() -> str:
    """Random, URL-safe, unpadded. Independent of the content and the filename."""
    return secrets.token_urlsafe(SLUG_BYTES)
