from fastapi import APIRouter

from memegen.api.v1.meme import router as meme_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(meme_router)
