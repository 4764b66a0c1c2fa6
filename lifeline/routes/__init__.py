from fastapi import APIRouter
from .request_routes import router as request_router
from .public_routes import router as public_router
from .donor_routes import router as donor_router
from .notification_routes import router as notification_router


router = APIRouter()

router.include_router(request_router)
router.include_router(public_router)
router.include_router(donor_router)
router.include_router(notification_router)
