from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Iterable, List

from runhistory.core.state.models import RunRecord


def write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, ensure_ascii=False, indent=2, sort_keys=True) + "\n", encoding="utf-8")


def run_to_dict(run: RunRecord) -> Dict[str, Any]:
    d = asdict(run)
    d["started_at_utc"] = run.started_at_iso
    return d


def runs_to_feed(title: str, runs: Iterable[RunRecord]) -> Dict[str, Any]:
    """
    Feed document for a run list: one entry per run, in list order.
    """
    entries: List[Dict[str, Any]] = [run_to_dict(r) for r in runs]
    return {"title": title, "count": len(entries), "entries": entries}


def write_jsonl(path: Path, runs: Iterable[RunRecord]) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with path.open("w", encoding="utf-8") as f:
        for r in runs:
            f.write(json.dumps(run_to_dict(r), ensure_ascii=False, sort_keys=True) + "\n")
            n += 1
    return n
