import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from clinic_scheduler.auth import jwt_handler
from clinic_scheduler.database import get_db
from clinic_scheduler.models.user import User
from clinic_scheduler.services.booking import ActingParty

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.id == int(subject)).first()
    if user is None:
        raise HTTPException(status_code=401, detail="User not found")

    # A role change since issue invalidates the token.
    if payload.get("role") != user.role:
        raise HTTPException(status_code=401, detail="Token role mismatch")
    return user


def get_acting_party(current_user: User = Depends(get_current_user)) -> ActingParty:
    return ActingParty(user_id=current_user.id, role=current_user.role)


def require_roles(*roles: str):
    allowed = set(roles)

    def dependency(acting_party: ActingParty = Depends(get_acting_party)) -> ActingParty:
        if acting_party.role not in allowed:
            raise HTTPException(status_code=403, detail="Access denied")
        return acting_party

    return dependency
