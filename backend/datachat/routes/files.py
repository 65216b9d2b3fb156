"""Artifact download route — ``GET /files/{execution_id}/{filename}``."""

import logging
import os

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse

from datachat.services.code_execution.sandbox import (
    IMAGE_EXTENSIONS,
    SandboxExecutor,
    is_execution_id,
    is_safe_artifact_name,
)
from .utils import get_executor, safe_path

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/files/{execution_id}/{filename}")
async def get_artifact(
    execution_id: str,
    filename: str,
    executor: SandboxExecutor = Depends(get_executor),
):
    if not is_execution_id(execution_id) or not is_safe_artifact_name(filename):
        raise HTTPException(status_code=400, detail="Invalid file path")
    if not filename.lower().endswith(IMAGE_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Unsupported file type")

    path = safe_path(executor.results_dir, execution_id, filename)
    if not os.path.isfile(path):
        raise HTTPException(status_code=404, detail="File not found")

    logger.debug("Serving artifact %s/%s", execution_id, filename)
    return FileResponse(path, headers={"Cross-Origin-Resource-Policy": "cross-origin"})
