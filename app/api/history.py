"""
GET /api/history
Returns the most recent analyses (newest first) from whichever backend is active.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.analyze import get_history_store
from app.services.history_store import HistoryStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["History"])


@router.get("/history")
async def get_history(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    store: HistoryStore = Depends(get_history_store),
):
    try:
        entries = await store.recent(limit)
    except Exception as e:
        logger.error("Failed to fetch history: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail={"error": "Failed to fetch history"})
    return [entry.to_wire() for entry in entries]
