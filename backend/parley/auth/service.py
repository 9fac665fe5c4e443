"""Identity gate: password hashing, token issuance and credential checks.

Tokens are HS256 JWTs carrying the user id in ``sub``. ``authenticate``
is a pure lookup; marking a user online is the presence registry's job.
"""
import logging
import time
from typing import Optional

import bcrypt
import jwt

from parley.errors import (
    ExpiredCredential,
    InvalidCredential,
    MissingCredential,
    ValidationFailed,
)
from parley.store import ChatStore, UserPublic, UserRecord

logger = logging.getLogger(__name__)


def extract_bearer(header: Optional[str]) -> Optional[str]:
    """Pull the token out of an ``Authorization: Bearer <token>`` header."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityGate:
    """Resolves bearer credentials to user identities and manages accounts."""

    def __init__(
        self,
        store: ChatStore,
        secret_key: str,
        algorithm: str = "HS256",
        token_ttl_seconds: int = 7 * 24 * 3600,
        bcrypt_rounds: int = 12,
    ) -> None:
        self.store = store
        self._secret_key = secret_key
        self._algorithm = algorithm
        self._token_ttl = token_ttl_seconds
        self._bcrypt_rounds = bcrypt_rounds

    # -----------------------------------------------------------------------
    # Secrets and tokens
    # -----------------------------------------------------------------------

    def hash_password(self, secret: str) -> str:
        if not secret:
            raise ValidationFailed("Password cannot be empty")
        salt = bcrypt.gensalt(rounds=self._bcrypt_rounds)
        return bcrypt.hashpw(secret.encode("utf-8"), salt).decode("utf-8")

    def verify_password(self, secret: str, digest: str) -> bool:
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            logger.warning("[Auth] Stored password digest is malformed")
            return False

    def issue_token(self, user_id: str) -> str:
        now = int(time.time())
        payload = {
            "sub": user_id,
            "iat": now,
            "exp": now + self._token_ttl,
        }
        return jwt.encode(payload, self._secret_key, algorithm=self._algorithm)

    def verify_token(self, token: str) -> str:
        """Decode a token and return its user id.

        Raises:
            ExpiredCredential: If the token is past its ``exp``.
            InvalidCredential: If the signature or claims are invalid.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError:
            raise ExpiredCredential()
        except jwt.InvalidTokenError as exc:
            logger.debug("[Auth] Token rejected: %s", exc)
            raise InvalidCredential()

        user_id = payload.get("sub")
        if not user_id or not isinstance(user_id, str):
            raise InvalidCredential()
        return user_id

    def authenticate(self, credential: Optional[str]) -> UserPublic:
        """Resolve a bearer token to the identity it was issued for.

        Raises:
            MissingCredential: No token supplied.
            InvalidCredential: Bad token, or no account for its user id.
            ExpiredCredential: Token has expired.
        """
        if not credential:
            raise MissingCredential()
        user_id = self.verify_token(credential)
        user = self.store.get_user(user_id)
        if user is None:
            raise InvalidCredential("User not found")
        return user.public()

    # -----------------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------------

    def register(self, username: str, email: str, password: str) -> UserRecord:
        digest = self.hash_password(password)
        user = self.store.create_user(username, email, digest)
        logger.info("[Auth] Registered user %s (%s)", user.id, user.username)
        return user

    def login(self, email: str, password: str) -> UserRecord:
        """Check an email/password pair.

        Unknown email and wrong password fail identically.
        """
        user = self.store.get_user_by_email(email)
        if user is None or not self.verify_password(password, user.passwordHash):
            raise InvalidCredential("Invalid credentials")
        return user
