"""API router for the mapping engine."""
from fastapi import APIRouter
from .mappings.router import router as mappings_router

router = APIRouter(prefix="/api")
router.include_router(mappings_router)
