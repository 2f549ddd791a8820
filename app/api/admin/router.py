from fastapi import APIRouter
from app.api.admin import auth, users

router = APIRouter()
router.include_router(auth.router, prefix="/auth", tags=["AdminAuth"])
router.include_router(users.router, prefix="/users", tags=["AdminUsers"])
