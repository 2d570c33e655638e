from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, List, Sequence

import pandas as pd

from dbstudio.exceptions.errors import ExportError
from dbstudio.logging.logger import get_logger

log = get_logger("export.exporter")

FORMATS = ("csv", "json")

_UNSAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]+")


def records_frame(records: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    # Documents may disagree on keys; pandas unions them and fills the gaps with NaN.
    return pd.DataFrame.from_records(list(records))


def export_page(records: List[Dict[str, Any]], out_dir: str, base_name: str, fmt: str = "csv") -> str:
    fmt = (fmt or "csv").lower()
    if fmt not in FORMATS:
        raise ExportError(f"Unsupported export format: {fmt}")

    safe = _UNSAFE_NAME.sub("_", base_name).strip("._") or "export"
    try:
        Path(out_dir).mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ExportError(f"Cannot create export directory {out_dir}: {e}") from e
    path = str(Path(out_dir) / f"{safe}.{fmt}")

    df = records_frame(records)
    try:
        if fmt == "csv":
            df.to_csv(path, index=False, encoding="utf-8")
        else:
            df.to_json(path, orient="records", indent=2, force_ascii=False)
    except Exception as e:
        log.exception("Export failed")
        raise ExportError(f"{fmt.upper()} export failed") from e

    log.info("Exported page", extra={"path": path, "rows": len(df), "format": fmt})
    return path
