from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.security import create_access_token, verify_password
from app.db.session import get_db
from app.models.user import ROLE_ADMIN
from app.schemas.admin import AdminLogin, AdminToken
from app.services.accounts import get_user_by_email
from app.services.admin_bootstrap import ensure_bootstrap_admin_for_login

router = APIRouter()


@router.post("/login", response_model=AdminToken)
def login(payload: AdminLogin, db: Session = Depends(get_db)):
    user = ensure_bootstrap_admin_for_login(db, payload.email, payload.password)
    if user is None:
        user = get_user_by_email(db, payload.email)
    if not user or not user.is_active or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.role != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Insufficient permissions")

    token = create_access_token(subject=str(user.id), email=user.email, role=user.role)
    return AdminToken(access_token=token)
