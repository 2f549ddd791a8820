from uuid import UUID

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.security import decode_access_token
from app.db.session import get_db
from app.models.user import User
from app.services.otp_lifecycle import OtpLifecycleManager

bearer = HTTPBearer(auto_error=False)

def _claims_or_401(creds: HTTPAuthorizationCredentials | None) -> dict:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    try:
        return decode_access_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

def get_current_claims(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict:
    return _claims_or_401(creds)

def get_optional_claims(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> dict | None:
    if not creds:
        return None
    return _claims_or_401(creds)

def load_user_from_claims(db: Session, claims: dict) -> User:
    try:
        user_id = UUID(str(claims.get("sub") or ""))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.query(User).filter(User.id == user_id).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user

def get_current_user(claims: dict = Depends(get_current_claims), db: Session = Depends(get_db)) -> User:
    return load_user_from_claims(db, claims)

def require_role(*roles: str):
    def _inner(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return _inner

def get_otp_manager(request: Request) -> OtpLifecycleManager:
    return request.app.state.otp_manager
