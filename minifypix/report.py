from __future__ import annotations

import csv
import json
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .batch import BatchSummary
from .results import FileFailure, OptimizationResult


@dataclass(frozen=True)
class FileReport:
    file_path: str
    original_size: int
    optimized_size: int
    saving: int
    saving_percent: str
    changed: bool
    skipped_reason: Optional[str]


@dataclass(frozen=True)
class BatchReport:
    created_utc: str
    summary: dict
    files: List[FileReport]


def build_report(
    results: List[OptimizationResult],
    failures: List[FileFailure],
    summary: BatchSummary,
) -> BatchReport:
    created_utc = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")

    files: List[FileReport] = []
    for r in results:
        files.append(
            FileReport(
                file_path=str(r.file_path),
                original_size=r.original_size,
                optimized_size=r.optimized_size,
                saving=r.saving,
                saving_percent=r.saving_percent,
                changed=r.changed,
                skipped_reason=None,
            )
        )

    # Failed files keep their bytes untouched
    for f in failures:
        files.append(
            FileReport(
                file_path=str(f.path),
                original_size=0,
                optimized_size=0,
                saving=0,
                saving_percent="0.00%",
                changed=False,
                skipped_reason=f.reason,
            )
        )

    summary_dict = {
        "total_files": summary.total_files,
        "optimized": summary.optimized,
        "skipped": summary.skipped,
        "cancelled": summary.cancelled,
        "total_original_bytes": summary.total_original_bytes,
        "total_optimized_bytes": summary.total_optimized_bytes,
        "total_saving": summary.total_saving,
        "saved_percent": summary.saved_percent,
    }

    return BatchReport(created_utc=created_utc, summary=summary_dict, files=files)


def save_report(report: BatchReport, path: Path) -> None:
    """Write JSON, or CSV when the file name ends in .csv."""
    if Path(path).suffix.lower() == ".csv":
        save_report_csv(report, path)
    else:
        save_report_json(report, path)


def save_report_json(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with path.open("w", encoding="utf-8") as f:
        json.dump(asdict(report), f, indent=2, ensure_ascii=False)


def save_report_csv(report: BatchReport, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    columns = [f.name for f in fields(FileReport)]
    with path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns)
        writer.writeheader()
        for row in report.files:
            writer.writerow(asdict(row))
