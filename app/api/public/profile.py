from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.common import domain_errors_as_http
from app.core.deps import get_current_user, get_otp_manager
from app.db.session import get_db
from app.models.user import User
from app.schemas.public import ChangePasswordIn, MessageOut, ProfileUpdateIn, UserRead
from app.services import accounts
from app.services.otp_lifecycle import OtpLifecycleManager

router = APIRouter()


@router.get("/me", response_model=UserRead)
def read_me(user: User = Depends(get_current_user)):
    return UserRead.model_validate(user)


@router.patch("/me", response_model=UserRead)
def update_me(payload: ProfileUpdateIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    with domain_errors_as_http():
        updated = accounts.update_profile(db, user, payload.model_dump(exclude_unset=True))
    return UserRead.model_validate(updated)


@router.post("/me/change-password", response_model=MessageOut)
def change_my_password(
    payload: ChangePasswordIn,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    with domain_errors_as_http():
        accounts.change_password(
            db,
            user,
            current_password=payload.current_password,
            new_password=payload.new_password,
        )
    return MessageOut(message="Password changed successfully")


@router.delete("/me", response_model=MessageOut)
def delete_me(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    otp: OtpLifecycleManager = Depends(get_otp_manager),
):
    with domain_errors_as_http():
        accounts.delete_account(db, otp, user)
    return MessageOut(message="Account deleted")
