from fastapi import APIRouter

from app.api.v1.endpoints.health import router as health_router
from app.api.v1.endpoints.listings import router as listings_router
from app.api.v1.endpoints.reports import router as reports_router
from app.api.v1.endpoints.executions import router as executions_router
from app.api.v1.endpoints.artifacts import router as artifacts_router
from app.api.v1.endpoints.uploads import router as uploads_router
from app.api.v1.endpoints.users import router as users_router
from app.api.v1.endpoints.internal import router as internal_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(listings_router, tags=["listings"])
router.include_router(reports_router, tags=["reports"])
router.include_router(executions_router, tags=["executions"])
router.include_router(artifacts_router, tags=["artifacts"])
router.include_router(uploads_router, tags=["uploads"])
router.include_router(users_router, tags=["users"])
router.include_router(internal_router, tags=["internal"])
