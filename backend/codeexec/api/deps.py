# backend/codeexec/api/deps.py
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from codeexec.core.security import InvalidToken, decode_token
from codeexec.services.orchestrator import Orchestrator

bearer = HTTPBearer(auto_error=False)


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


async def get_current_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
) -> str:
    if not creds:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token"
        )
    try:
        return decode_token(creds.credentials)
    except InvalidToken:
        raise HTTPException(status_code=401, detail="Invalid token")
