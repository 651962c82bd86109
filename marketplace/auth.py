"""
Bearer token verification. Tokens are issued by the identity service with
``user_id`` and ``role`` claims; this service only checks them.
"""
import jwt
from fastapi import HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from marketplace.models import Caller
from marketplace.order_state import Role

bearer = HTTPBearer(scheme_name="AccessToken", bearerFormat="JWT", auto_error=False)


class TokenVerifier:
    def __init__(self, secret: str, algorithm: str = "HS256"):
        self._secret = secret
        self._algorithm = algorithm

    def verify(self, token: str) -> Caller:
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.InvalidTokenError:
            raise HTTPException(status_code=401, detail="Invalid token")

        user_id = payload.get("user_id")
        try:
            role = Role(payload.get("role"))
        except ValueError:
            role = None
        if not user_id or role is None:
            raise HTTPException(status_code=401, detail="Invalid token payload")
        return Caller(user_id=str(user_id), role=role)


def get_caller(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(bearer),
) -> Caller:
    if not credentials or (credentials.scheme or "").lower() != "bearer":
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
    verifier: TokenVerifier = request.app.state.token_verifier
    return verifier.verify(credentials.credentials.strip())
