import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union


def results_filename(now: Optional[datetime] = None) -> str:
    """File name for a results dump, e.g. results-2024-03-05T07-08-09-123Z.json"""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    timestamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    timestamp = timestamp.replace("+00:00", "Z")
    return "results-{}.json".format(timestamp.replace(":", "-").replace(".", "-"))


def write_results(
    data: Any, output_dir: Union[str, Path], now: Optional[datetime] = None
) -> Path:
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    output_file = output_dir / results_filename(now)
    output_file.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return output_file
