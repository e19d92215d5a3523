from src.auth.context import AuthContext
from src.auth.jwt import create_access_token, decode_access_token

__all__ = [
    "AuthContext",
    "create_access_token",
    "decode_access_token",
]
