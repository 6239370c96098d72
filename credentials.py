"""Password hashing and signed session tokens."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt

from errors import AuthenticationError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


class CredentialService:
    def __init__(self, secret: str, expires_min: int = 24 * 60, bcrypt_rounds: int = 10):
        self.secret = secret
        self.expires_min = expires_min
        self.bcrypt_rounds = bcrypt_rounds

    @property
    def expires_in(self) -> int:
        return self.expires_min * 60

    def hash_password(self, password: str) -> str:
        # bcrypt only looks at the first 72 bytes
        password_bytes = password.encode("utf-8")[:72]
        return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    def verify_password(self, password: str, hashed: str) -> bool:
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8")[:72], hashed.encode("utf-8"))
        except ValueError:
            logger.warning("Stored password hash is malformed")
            return False

    def issue_token(self, user: Dict[str, Any]) -> str:
        payload = {
            "sub": user["id"],
            "email": user.get("email"),
            "role": user.get("role"),
            "exp": datetime.now(timezone.utc) + timedelta(minutes=self.expires_min),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def decode_token(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")
        if not payload.get("sub"):
            raise AuthenticationError("Invalid token")
        return payload
