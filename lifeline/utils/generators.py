import secrets

RESPONSE_TOKEN_BYTES = 16


def generate_response_token(nbytes: int = RESPONSE_TOKEN_BYTES) -> str:
    """Single-use token for a donor response link (URL safe, 128 bits)."""
    return secrets.token_urlsafe(nbytes)


def build_response_url(base_url: str, token: str) -> str:
    return f"{base_url.rstrip('/')}/respond/{token}"
