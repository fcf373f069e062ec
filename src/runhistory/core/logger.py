from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict

ROOT_LOGGER = "runhistory"


def get_logger(name: str) -> logging.Logger:
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def build_cli_logger(log_path: Path, verbose: bool = False) -> logging.Logger:
    """
    File-backed logger for CLI invocations. Library modules log under the
    same root, so their events land in the same file.
    """
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    # close previous handlers (repeated invocations in one process)
    for h in list(logger.handlers):
        try:
            h.close()
        except Exception:  # noqa: BLE001
            pass
    logger.handlers.clear()

    logger.propagate = False

    fh = logging.FileHandler(str(log_path), encoding="utf-8")
    fh.setLevel(logging.DEBUG if verbose else logging.INFO)
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    logger.addHandler(fh)

    return logger


def log_event(logger: logging.Logger, event: Dict, level: int = logging.INFO) -> None:
    if not logger.isEnabledFor(level):
        return
    logger.log(level, json.dumps(event, ensure_ascii=False, sort_keys=True))
