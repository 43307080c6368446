"""JSON line journal for history, evaluation and engine events."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel

from .config import Config

logger = logging.getLogger(__name__)


def log_entry(
    category: str,
    label: str,
    entry: BaseModel,
    *,
    path: Path | None = None,
) -> None:
    """Record ``entry`` under ``category``/``label``.

    Enabled entries are emitted to the process log at ``DEBUG`` level. When
    :attr:`Config.journal_dir` is set (or ``path`` is given) they are also
    appended to ``<category>_journal.jsonl``.
    """

    if not Config.is_log_enabled(category, label):
        return
    data = entry.model_dump(mode="json")
    data["label"] = label
    logger.debug("%s %s", category, json.dumps(data))

    if path is None:
        if Config.journal_dir is None:
            return
        path = Path(Config.journal_dir) / f"{category}_journal.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a") as fh:
        fh.write(json.dumps(data) + "\n")
