from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt
from codeexec.core.config import get_settings


class InvalidToken(Exception):
    pass


def create_access_token(sub: str, minutes: int | None = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    payload = {"sub": sub, "exp": expire}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_token(token: str) -> str:
    settings = get_settings()
    try:
        data = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except JWTError as exc:
        raise InvalidToken(str(exc)) from exc
    sub = data.get("sub")
    if not sub:
        raise InvalidToken("token has no subject")
    return sub
