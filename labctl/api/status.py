"""
GET /status
State of the current or most recent rebuild run.
"""
from fastapi import APIRouter

from labctl.api.rebuild import tracker

router = APIRouter()


@router.get("/status")
async def get_status():
    return tracker.status.model_dump(mode="json")
