"""
Utility functions for run reports.

This module provides functions to:
- Render the per-repository summary table
- Log the run summary
- Save the full decision report as JSON
- Generate timestamped report filenames
"""
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from tabulate import tabulate

from retention.logging_utils import get_logger
from retention.models import RunSummary

logger = get_logger(__name__)


# ============================================================================
# Timestamp Utilities
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/retention.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/retention-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Summary Rendering
# ============================================================================

def format_summary_table(summary: RunSummary) -> str:
    """Render one row per repository with its decision counts"""
    headers = ["Repository", "Status", "Tags", "Retained", "Protected",
               "Would delete" if summary.dry_run else "Deleted", "Failed"]
    rows = []
    for result in summary.results:
        rows.append([
            result.repository,
            result.status.value,
            len(result.decisions),
            result.retained,
            result.protected,
            result.would_delete if summary.dry_run else result.deleted,
            result.failed,
        ])
    return tabulate(rows, headers=headers, tablefmt="grid")


def log_summary(summary: RunSummary) -> None:
    """Log a standardized run summary"""
    mode = "DRY RUN: " if summary.dry_run else ""
    logger.info(f"{mode}Retention Summary (deadline {summary.deadline.isoformat()}):")
    for line in format_summary_table(summary).splitlines():
        logger.info(line)
    if summary.dry_run:
        logger.info(f"   Would delete: {summary.total('would_delete')}")
    else:
        logger.info(f"   Successfully deleted: {summary.total('deleted')}")
        logger.info(f"   Failed deletions: {summary.total('failed')}")
    logger.info(f"   Skipped (still referenced): {summary.total('protected')}")
    skipped = summary.skipped_repositories
    if skipped:
        logger.warning(f"   Repositories skipped after fetch errors: {', '.join(skipped)}")


# ============================================================================
# Report Saving Functions
# ============================================================================

def save_json(path: str, data: Dict[str, Any], timestamp: bool = False) -> str:
    """
    Write a JSON report, creating parent directories.

    Args:
        path: Target file path
        data: JSON-serializable object
        timestamp: If True, add timestamp to the filename

    Returns:
        Path of the written file
    """
    if timestamp:
        path = add_timestamp_to_path(path)
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        json.dump(data, f, indent=2, default=str)
    logger.info(f"Report written to {target}")
    return str(target)
