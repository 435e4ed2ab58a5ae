from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Protocol


class _StatusSource(Protocol):
    def status(self) -> dict[str, Any]:
        ...


class DashboardWriter:
    """Atomically rewrites a JSON file with the status of every instance."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def write(self, instances: Iterable[_StatusSource], **extra: Any) -> None:
        snapshot = {
            "updated_at": datetime.now(timezone.utc).isoformat(),
            **extra,
            "instances": [instance.status() for instance in instances],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(snapshot, indent=2, ensure_ascii=True, default=str), encoding="utf-8")
        tmp_path.replace(self.path)
