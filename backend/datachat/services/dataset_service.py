"""Dataset service — turns an uploaded CSV into a DatasetDescriptor.

Column types are inferred from the first 100 non-empty values of each
column: all numeric → ``numeric``, all parseable as dates → ``date``,
anything else → ``categorical``.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from typing import Dict, List, Optional

import pandas as pd

from datachat.core.config import settings
from datachat.services.agent.state import DatasetDescriptor

logger = logging.getLogger(__name__)

_TYPE_SAMPLE_SIZE = 100
_SAMPLE_ROWS = 5
_COUNT_CHUNK_ROWS = 50_000


class DatasetError(ValueError):
    """The uploaded file is not a usable CSV table."""


def _infer_column_type(values: pd.Series) -> str:
    non_empty = values.dropna().astype(str).str.strip()
    non_empty = non_empty[non_empty != ""].head(_TYPE_SAMPLE_SIZE)
    if non_empty.empty:
        return "categorical"

    if pd.to_numeric(non_empty, errors="coerce").notna().all():
        return "numeric"

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        parsed = pd.to_datetime(non_empty, errors="coerce", format="mixed")
    if parsed.notna().all():
        return "date"

    return "categorical"


def infer_column_types(df: pd.DataFrame) -> Dict[str, str]:
    """Map each column name to ``numeric``, ``date`` or ``categorical``."""
    return {str(col): _infer_column_type(df[col]) for col in df.columns}


def _count_rows(path: str) -> int:
    return sum(len(chunk) for chunk in pd.read_csv(path, chunksize=_COUNT_CHUNK_ROWS, dtype=str))


def load_dataset(path: str, name: Optional[str] = None, max_rows: Optional[int] = None) -> DatasetDescriptor:
    """Parse the CSV at *path* and describe it.

    Raises:
        DatasetError: empty file, no header row, or unparseable content.
    """
    max_rows = max_rows or settings.MAX_DATASET_ROWS
    try:
        df = pd.read_csv(path, nrows=max_rows)
        total_rows = _count_rows(path)
    except pd.errors.EmptyDataError as exc:
        raise DatasetError("CSV file is empty") from exc
    except (pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise DatasetError(f"Could not parse CSV: {exc}") from exc

    if len(df.columns) == 0:
        raise DatasetError("CSV file has no columns")

    columns: List[str] = [str(c) for c in df.columns]
    sample = json.loads(df.head(_SAMPLE_ROWS).to_json(orient="records", date_format="iso"))

    descriptor = DatasetDescriptor(
        name=name or os.path.basename(path),
        path=path,
        columns=tuple(columns),
        column_types=infer_column_types(df),
        total_rows=total_rows,
        sample_rows=tuple(sample),
    )
    logger.info(
        "Loaded dataset %s: %d rows, %d columns (%s)",
        descriptor.name, total_rows, len(columns),
        ", ".join(f"{c}={t}" for c, t in descriptor.column_types.items()),
    )
    return descriptor


def remove_dataset_file(dataset: DatasetDescriptor) -> None:
    """Delete the stored upload behind *dataset*, if it still exists."""
    try:
        os.remove(dataset.path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove dataset file %s: %s", dataset.path, exc)
