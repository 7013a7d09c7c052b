from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from wikigate.config import read_config_document, require_bool, require_dict, require_optional_str


@dataclass(frozen=True)
class ObservabilityConfig:
    metrics_enabled: bool
    task_event_log_dir: Optional[str]


def load_observability_config(*, path: Path) -> ObservabilityConfig:
    doc, _ = read_config_document(path=path)
    section = doc.get("observability")
    obs = require_dict(section if section is not None else {}, path="observability")
    return ObservabilityConfig(
        metrics_enabled=require_bool(obs.get("metrics_enabled", False), path="observability.metrics_enabled"),
        task_event_log_dir=require_optional_str(
            obs.get("task_event_log_dir"), path="observability.task_event_log_dir"
        ),
    )
