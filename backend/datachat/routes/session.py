"""Session routes — create, inspect and discard a conversation session."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from datachat.services.dataset_service import remove_dataset_file
from datachat.services.session_store import SessionStore
from .utils import get_session_store

logger = logging.getLogger(__name__)
router = APIRouter()

WELCOME_MESSAGE = (
    "👋 **Welcome to Your AI Data Analyst!**\n\n"
    "I'm here to help you analyze your CSV data with insights and visualizations.\n\n"
    "**Getting Started:**\n"
    "1. Upload your CSV file\n"
    "2. Ask me to analyze specific aspects of your data\n"
    "3. I'll generate code, run it securely, and show you the results\n\n"
    "**Example requests:**\n"
    '• "Show me a correlation heatmap"\n'
    '• "Create histograms for numeric columns"\n'
    '• "Find outliers in the data"'
)


@router.post("/session")
async def create_session(store: SessionStore = Depends(get_session_store)):
    session = store.get_or_create()
    return {"session_id": session.id, "message": WELCOME_MESSAGE}


@router.get("/session/{session_id}")
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = store.find(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session.to_dict()


@router.delete("/session/{session_id}")
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    session = store.delete(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    for dataset in session.datasets:
        remove_dataset_file(dataset)
    return {"success": True, "session_id": session_id}
