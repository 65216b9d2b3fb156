import asyncio
import logging
import os
import re
import time
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse

from datachat.core.config import settings
from datachat.services.agent.state import ChatTurn, DatasetDescriptor
from datachat.services.dataset_service import DatasetError, load_dataset
from datachat.services.session_store import SessionStore
from .utils import get_session_store, require_session_id, safe_path

logger = logging.getLogger(__name__)
router = APIRouter()

ALLOWED_EXTENSIONS = {".csv"}
ALLOWED_MIME_TYPES = {"text/csv", "application/csv", "application/vnd.ms-excel", "text/plain"}
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


# ── Unified error response ────────────────────────────────────────


def _upload_error(status_code: int, error_code: str, message: str, details: str = "") -> JSONResponse:
    """Return a structured upload error in the unified format."""
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error_code": error_code,
            "message": message,
            "details": details,
            "request_id": uuid.uuid4().hex,
        },
    )


def _stored_name(filename: str) -> str:
    base = _UNSAFE_NAME_CHARS.sub("_", os.path.basename(filename or "upload.csv")).strip("._")
    return f"{uuid.uuid4().hex}_{base or 'upload.csv'}"


def upload_summary(dataset: DatasetDescriptor) -> str:
    """Assistant message confirming an upload and suggesting first questions."""
    counts = {kind: len(dataset.columns_of_type(kind)) for kind in ("numeric", "categorical", "date")}
    types_line = f"{counts['numeric']} numeric, {counts['categorical']} categorical"
    if counts["date"]:
        types_line += f", {counts['date']} date"

    shown = ", ".join(dataset.columns[:6])
    if len(dataset.columns) > 6:
        shown += f" +{len(dataset.columns) - 6} more"

    return "\n".join([
        "✅ **File Uploaded Successfully!**\n",
        f"📁 **{dataset.name}**",
        f"📊 **Data Overview:** {dataset.total_rows:,} rows × {len(dataset.columns)} columns",
        f"🔢 **Data Types:** {types_line}",
        f"📋 **Columns:** {shown}",
        "\n🎯 **Ready for Analysis!** Try asking me to:",
        '• 📈 **"Show me key statistics and distributions"**',
        '• 🔗 **"Create a correlation heatmap"**',
        '• 📊 **"Plot histograms for numeric columns"**',
        '• 📋 **"Generate a comprehensive data summary"**',
    ])


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    session_id: str = Form(...),
    store: SessionStore = Depends(get_session_store),
):
    """Store a CSV upload and make it the session's current dataset."""
    session_id = require_session_id(session_id)
    filename = file.filename or ""
    ext = os.path.splitext(filename)[1].lower()
    if ext not in ALLOWED_EXTENSIONS and file.content_type not in ALLOWED_MIME_TYPES:
        return _upload_error(400, "UNSUPPORTED_TYPE", "Only CSV files are allowed", filename)

    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)
    final_path = safe_path(settings.UPLOAD_DIR, _stored_name(filename))
    start_time = time.perf_counter()
    loop = asyncio.get_running_loop()
    written = 0
    keep_file = False

    try:
        # ── 1. Stream to disk in 1 MiB chunks, enforcing the size cap ──
        with open(final_path, "wb") as out:
            while chunk := await file.read(1024 * 1024):
                written += len(chunk)
                if written > settings.max_upload_bytes:
                    return _upload_error(
                        413, "FILE_TOO_LARGE",
                        f"File exceeds the {settings.MAX_UPLOAD_SIZE_MB} MB limit",
                    )
                await loop.run_in_executor(None, out.write, chunk)

        if written == 0:
            return _upload_error(400, "EMPTY_FILE", "Uploaded file is empty", filename)

        # ── 2. Parse and describe (pandas, off the event loop) ──
        try:
            dataset = await loop.run_in_executor(None, load_dataset, final_path, filename or None)
        except DatasetError as exc:
            return _upload_error(400, "INVALID_CSV", "Could not read the CSV file", str(exc))

        # ── 3. Attach to the session ──
        store.add_dataset(session_id, dataset)
        store.add_message(session_id, ChatTurn(role="assistant", content=upload_summary(dataset)))
        keep_file = True
    finally:
        if not keep_file and os.path.exists(final_path):
            os.remove(final_path)

    logger.info(
        "[UPLOAD] session=%s file=%s size=%d rows=%d in %.1fms",
        session_id, filename, written, dataset.total_rows,
        (time.perf_counter() - start_time) * 1000,
    )
    return {
        "success": True,
        "message": f'File "{dataset.name}" uploaded successfully!',
        "session_id": session_id,
        "file_info": {
            "name": dataset.name,
            "size": written,
            "rows": dataset.total_rows,
            "columns": len(dataset.columns),
            "headers": list(dataset.columns),
            "data_types": dict(dataset.column_types),
        },
        "dataset": dataset.to_dict(),
    }
