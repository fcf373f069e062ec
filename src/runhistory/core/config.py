from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from runhistory.core.runlist import NEW_BUILDS_MIN_COUNT, NEW_BUILDS_WINDOW_DAYS
from runhistory.core.state.db import DEFAULT_DB_PATH, Db, DbJob


@dataclass(frozen=True)
class FeedSettings:
    min_count: int = NEW_BUILDS_MIN_COUNT
    window_days: int = NEW_BUILDS_WINDOW_DAYS


@dataclass(frozen=True)
class ViewDef:
    name: str
    description: str
    jobs: List[str]


@dataclass(frozen=True)
class HistoryConfig:
    db_path: Path = DEFAULT_DB_PATH
    feed: FeedSettings = field(default_factory=FeedSettings)
    views: Dict[str, ViewDef] = field(default_factory=dict)

    @classmethod
    def default(cls) -> "HistoryConfig":
        return cls()

    def get_view(self, name: str) -> ViewDef:
        if name not in self.views:
            raise KeyError(f"unknown view: {name}")
        return self.views[name]


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(x) for x in value]
    return [str(value)]


def default_config_path() -> Optional[Path]:
    candidate = Path.cwd() / "config" / "history.yaml"
    return candidate if candidate.exists() else None


def load_history_config(path: Path) -> HistoryConfig:
    if not path.exists():
        raise FileNotFoundError(f"history.yaml not found: {path}")

    raw: Dict[str, Any] = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    raw_feed: Dict[str, Any] = raw.get("feed", {}) or {}
    raw_views = raw.get("views", {}) or {}
    if not isinstance(raw_views, dict):
        raise ValueError("history.yaml: 'views' must be a mapping")

    feed = FeedSettings(
        min_count=int(raw_feed.get("min_count", NEW_BUILDS_MIN_COUNT)),
        window_days=int(raw_feed.get("window_days", NEW_BUILDS_WINDOW_DAYS)),
    )

    views: Dict[str, ViewDef] = {}
    for vname, v in raw_views.items():
        if not isinstance(v, dict):
            raise ValueError(f"history.yaml: view {vname!r} must be a mapping")
        jobs = v.get("jobs", [])
        if jobs is not None and not isinstance(jobs, (list, str)):
            raise ValueError(f"history.yaml: view {vname!r} jobs must be a list")
        views[str(vname)] = ViewDef(
            name=str(vname),
            description=str(v.get("description", "")),
            jobs=list(dict.fromkeys(_as_list(jobs))),
        )

    db_path = Path(raw["db_path"]) if raw.get("db_path") else DEFAULT_DB_PATH
    return HistoryConfig(db_path=db_path, feed=feed, views=views)


@dataclass
class ConfigView:
    """
    View whose items are the stored jobs named by a configured view.
    """

    view: ViewDef
    db: Db

    @property
    def name(self) -> str:
        return self.view.name

    def get_items(self) -> List[DbJob]:
        return self.db.get_jobs(self.view.jobs)
