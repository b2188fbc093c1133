"""
Credential generation helpers.
"""
import base64
import secrets

DEFAULT_PASSWORD_LENGTH = 32


def generate_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    """
    Generate a high-entropy password from the URL-safe base64 alphabet.

    Args:
        length: Exact length of the returned password

    Returns:
        Random password of ``length`` characters
    """
    if length < 16:
        raise ValueError("password length must be at least 16")
    raw = secrets.token_bytes(length)
    return base64.urlsafe_b64encode(raw).decode("ascii")[:length]


def generate_suffix(length: int = 6) -> str:
    """Short random lowercase hex suffix for generated usernames."""
    return secrets.token_hex((length + 1) // 2)[:length]


def encode_secret_data(values: "dict[str, str]") -> "dict[str, str]":
    """Base64-encode secret values for a Secret's ``data`` field."""
    return {key: base64.b64encode(value.encode()).decode() for key, value in values.items()}


def decode_secret_data(data: "dict[str, str] | None") -> "dict[str, str]":
    """Decode a Secret's ``data`` field."""
    return {key: base64.b64decode(value).decode() for key, value in (data or {}).items()}
