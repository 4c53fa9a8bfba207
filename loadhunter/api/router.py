from fastapi import APIRouter

from loadhunter.routers import load_hunter, websocket

api_router = APIRouter()
api_router.include_router(load_hunter.router, prefix="/load-hunter", tags=["Load Hunter"])
api_router.include_router(websocket.router, tags=["WebSocket"])
