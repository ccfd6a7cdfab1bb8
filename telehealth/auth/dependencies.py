import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from telehealth.auth import jwt_handler
from telehealth.scheduling.state_machine import Actor, ActorRole

security = HTTPBearer()


def actor_from_claims(payload: dict) -> Actor:
    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    try:
        role = ActorRole(str(payload.get("role", "")).strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Invalid token role") from exc

    return Actor(id=str(subject), role=role)


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    return actor_from_claims(payload)
