import hmac

from .config import settings


def verify_api_key(api_key: str) -> bool:
    """
    Verify API key against configured valid keys
    """
    candidate = api_key.encode()
    return any(hmac.compare_digest(candidate, valid.encode()) for valid in settings.api_keys)
