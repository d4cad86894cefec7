"""
peergrade/routes/__init__.py
Route registration
"""
from fastapi import APIRouter
from peergrade.routes import evaluations, investments, grading

router = APIRouter()

router.include_router(evaluations.router)
router.include_router(investments.router)
router.include_router(grading.router)
