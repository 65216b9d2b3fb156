"""Background housekeeping — idle sessions and old execution results.

Runs for the application lifetime, every
``SESSION_CLEANUP_INTERVAL_SECONDS``:

1. drop sessions idle past ``SESSION_TIMEOUT_MINUTES`` and delete their
   uploaded CSV files
2. purge execution directories older than ``RESULTS_RETENTION_HOURS``
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict

from datachat.core.config import settings
from datachat.services.code_execution.sandbox import purge_expired_results
from datachat.services.dataset_service import remove_dataset_file
from datachat.services.session_store import SessionStore

logger = logging.getLogger(__name__)


async def run_housekeeping_once(store: SessionStore, results_dir: str) -> Dict[str, int]:
    """One cleanup pass. Returns counts of what was removed."""
    expired = store.cleanup_expired()
    files = 0
    for session in expired:
        for dataset in session.datasets:
            remove_dataset_file(dataset)
            files += 1

    loop = asyncio.get_running_loop()
    purged = await loop.run_in_executor(
        None, purge_expired_results, results_dir, settings.RESULTS_RETENTION_HOURS * 3600
    )
    return {"sessions": len(expired), "dataset_files": files, "result_dirs": purged}


async def housekeeping_loop(store: SessionStore, results_dir: str) -> None:
    """Repeat :func:`run_housekeeping_once` until cancelled."""
    interval = settings.SESSION_CLEANUP_INTERVAL_SECONDS
    logger.info("Housekeeping started (every %ss)", interval)
    while True:
        await asyncio.sleep(interval)
        try:
            counts = await run_housekeeping_once(store, results_dir)
            if any(counts.values()):
                logger.info("Housekeeping removed %s", counts)
        except Exception as exc:
            logger.error("Housekeeping pass failed: %s", exc)
