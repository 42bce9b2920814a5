"""Router aggregation."""

from fastapi import APIRouter

from services.api.src.safesnap.routes.image_analysis import router as image_analysis_router
from services.api.src.safesnap.routes.incidents import router as incidents_router
from services.api.src.safesnap.routes.ops import router as ops_router
from services.api.src.safesnap.routes.rca import router as rca_router
from services.api.src.safesnap.routes.uploads import blob_router
from services.api.src.safesnap.routes.uploads import router as uploads_router

api_router = APIRouter()
api_router.include_router(incidents_router, prefix="/api", tags=["incidents"])
api_router.include_router(rca_router, prefix="/api", tags=["rca"])
api_router.include_router(image_analysis_router, prefix="/api", tags=["image-analysis"])
api_router.include_router(uploads_router, prefix="/api", tags=["uploads"])
api_router.include_router(ops_router, prefix="/api", tags=["ops"])
api_router.include_router(blob_router, tags=["blobs"])
