from fastapi import APIRouter
from app.api.public import auth, profile

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["Auth"])
router.include_router(profile.router, prefix="/profile", tags=["Profile"])
