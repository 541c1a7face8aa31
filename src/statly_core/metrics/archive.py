"""Raw provider payload archive (immutable JSONL audit log)."""
import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import aiofiles


logger = logging.getLogger(__name__)


class RawPayloadArchive:
    """Appends one envelope per provider payload to data/raw/raw_<provider>_<date>.jsonl."""

    def __init__(self, raw_dir: str | Path) -> None:
        self.raw_dir = Path(raw_dir)
        self.raw_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, provider: str, metric_date: date) -> Path:
        return self.raw_dir / f"raw_{provider}_{metric_date.isoformat()}.jsonl"

    async def append(
        self,
        provider: str,
        app_id: str,
        metric_date: date,
        payload: Any,
    ) -> None:
        """Append a payload envelope; failures are logged, never raised."""
        envelope = {
            "source": provider,
            "app_id": app_id,
            "metric_date": metric_date.isoformat(),
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "response_item": payload,
        }
        path = self.path_for(provider, metric_date)

        try:
            async with aiofiles.open(path, mode="a", encoding="utf-8") as handle:
                await handle.write(
                    json.dumps(envelope, separators=(",", ":"), default=str) + "\n"
                )
        except OSError as exc:
            logger.error("Failed to archive %s payload to %s: %s", provider, path, exc)
