from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.api.common import domain_errors_as_http
from app.core.deps import get_otp_manager, require_role
from app.db.session import get_db
from app.models.user import ROLE_ADMIN, User
from app.schemas.admin import AdminUserUpdateIn, UserListOut
from app.schemas.public import MessageOut, UserRead
from app.services import accounts
from app.services.otp_lifecycle import OtpLifecycleManager

router = APIRouter()


def _user_or_404(db: Session, user_id: UUID) -> User:
    user = accounts.get_user_by_id(db, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("", response_model=UserListOut)
def list_users(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    rows, total = accounts.list_users(db, limit=limit, offset=offset)
    return UserListOut(rows=[UserRead.model_validate(row) for row in rows], total=total)


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: UUID, admin: User = Depends(require_role(ROLE_ADMIN)), db: Session = Depends(get_db)):
    return UserRead.model_validate(_user_or_404(db, user_id))


@router.patch("/{user_id}", response_model=UserRead)
def update_user(
    user_id: UUID,
    payload: AdminUserUpdateIn,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
):
    changes = payload.model_dump(exclude_unset=True)
    if user_id == admin.id and ("role" in changes or changes.get("is_active") is False):
        raise HTTPException(status_code=400, detail="Administrators cannot change their own role or status")
    with domain_errors_as_http():
        user = accounts.update_user(db, user_id, changes)
    return UserRead.model_validate(user)


@router.post("/{user_id}/deactivate", response_model=UserRead)
def deactivate_user(
    user_id: UUID,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Administrators cannot deactivate their own account")
    with domain_errors_as_http():
        user = accounts.deactivate_user(db, otp, user_id)
    return UserRead.model_validate(user)


@router.post("/{user_id}/verify-phone", response_model=UserRead)
def verify_phone(user_id: UUID, admin: User = Depends(require_role(ROLE_ADMIN)), db: Session = Depends(get_db)):
    with domain_errors_as_http():
        user = accounts.mark_phone_verified(db, user_id)
    return UserRead.model_validate(user)


@router.delete("/{user_id}", response_model=MessageOut)
def delete_user(
    user_id: UUID,
    admin: User = Depends(require_role(ROLE_ADMIN)),
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    if user_id == admin.id:
        raise HTTPException(status_code=400, detail="Administrators cannot delete their own account here")
    user = _user_or_404(db, user_id)
    with domain_errors_as_http():
        accounts.delete_account(db, otp, user)
    return MessageOut(message="User deleted")
