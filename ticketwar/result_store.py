"""
Side artifacts of a run: the extracted payment reference and a run history.
"""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from ticketwar.models import FlowResult

DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
REFERENCE_FILE = Path(os.getenv("REFERENCE_FILE", "last_reference.txt"))
RUNS_FILE = DATA_DIR / "runs.json"
MAX_RUN_ITEMS = int(os.getenv("MAX_RUN_ITEMS", "100"))

_lock = threading.Lock()


def save_reference(reference: str, url: str, path: Path = REFERENCE_FILE) -> Path:
    """Write the reference with a timestamp and the event URL for the operator."""
    path.parent.mkdir(parents=True, exist_ok=True)
    content = (
        f"VA: {reference}\n"
        f"Time: {datetime.now(timezone.utc).isoformat()}\n"
        f"Event: {url}\n"
    )
    with open(path, "w", encoding="utf-8") as f:
        f.write(content)
    return path


def load_runs(path: Path = RUNS_FILE) -> List[Dict[str, Any]]:
    """Load run history from file."""
    if not path.exists():
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError:
        return []
    return data if isinstance(data, list) else []


def create_run_item(url: str, result: FlowResult, started_at: Optional[str] = None) -> Dict[str, Any]:
    """Create a standardized run history item."""
    return {
        "ts": datetime.now(timezone.utc).isoformat(),
        "started_at": started_at,
        "url": url,
        "state": result.state.value,
        "success": result.success,
        "message": result.message,
        "reference": result.reference,
        "details": result.details,
    }


def add_run(item: Dict[str, Any], path: Path = RUNS_FILE) -> None:
    """Append a run to the history, keeping the last MAX_RUN_ITEMS."""
    with _lock:
        items = load_runs(path)
        items.append(item)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(items[-MAX_RUN_ITEMS:], f, indent=2, default=str)
