"""
Activity logging for payment decisions.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import ActivityAction, ActivityLogEntry, Payment

logger = structlog.get_logger()


class ActivityLogger:
    """
    Append-only activity trail kept on each payment.
    Every entry is mirrored to structlog and can be exported to JSON.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def record(
        self,
        payment: Payment,
        action: ActivityAction,
        details: str,
        now: datetime,
        user: str = "System",
        qualifier: Optional[str] = None,
    ) -> ActivityLogEntry:
        """Append an entry to the payment's activity log."""
        entry = ActivityLogEntry(
            timestamp=now,
            action=action,
            details=details,
            user=user,
            qualifier=qualifier,
        )
        payment.activity_log.append(entry)

        logger.info(
            entry.label,
            payment_id=payment.id,
            payment_number=payment.payment_number,
            details=details,
            user=user,
        )
        return entry

    def entries(
        self,
        payment: Payment,
        action_filter: Optional[ActivityAction] = None,
    ) -> List[ActivityLogEntry]:
        """Get a payment's entries, optionally filtered by action."""
        entries = payment.activity_log
        if action_filter:
            entries = [e for e in entries if e.action == action_filter]
        return list(entries)

    def export_to_file(
        self,
        payment: Payment,
        exported_at: datetime,
        output_path: Optional[Path] = None,
    ) -> Path:
        """Export a payment's activity trail to a JSON file."""
        if output_path is None:
            output_path = self.settings.reports_dir / f"activity_{payment.id}.json"

        output_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "payment_id": payment.id,
            "payment_number": payment.payment_number,
            "exported_at": exported_at.isoformat(),
            "total_entries": len(payment.activity_log),
            "entries": [e.to_dict() for e in payment.activity_log],
        }

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)

        logger.info("Activity log exported", path=str(output_path))
        return output_path

    def summary(self, payment: Payment) -> dict:
        """Get summary statistics of a payment's activity log."""
        action_counts = Counter(e.label for e in payment.activity_log)
        return {
            "total_entries": len(payment.activity_log),
            "action_counts": dict(action_counts),
            "last_action": payment.activity_log[-1].label if payment.activity_log else None,
        }
