from typing import Any, Dict

import jwt

from marketchat.core.config import get_settings


def decode_access_token(token: str) -> Dict[str, Any]:
    """Verify a bearer token and return its claims. Raises ``jwt.PyJWTError``."""
    settings = get_settings()
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
