"""
Manual Subscriptions

Customers billed outside Stripe are kept in a JSON file and merged into
snapshots and MRR at read time. Each entry has the SubscriptionRecord
shape, e.g.::

    [
        {
            "subscription_id": "manual_acme",
            "customer_email": "ops@acme.example",
            "customer_name": "Acme",
            "status": "active",
            "monthly_value": 500,
            "created_at": "2024-09-02T00:00:00Z"
        }
    ]
"""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import structlog
from pydantic import ValidationError

from src.analytics.exceptions import ManualSourceError
from src.config import get_settings
from src.transformation.records import SubscriptionRecord
from src.transformation.transformers import SubscriptionTransformer

logger = structlog.get_logger(__name__)


class ManualSubscriptionSource:
    """
    Loads manually curated subscriptions.

    Either a file path or in-memory entries may be given; with neither,
    the configured ``ANALYTICS_MANUAL_SUBSCRIPTIONS_PATH`` is used and an
    unset path means no manual subscriptions.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        entries: Optional[Iterable[Dict[str, Any]]] = None,
        transformer: Optional[SubscriptionTransformer] = None,
    ):
        settings = get_settings().analytics
        if path is None and entries is None:
            path = settings.manual_subscriptions_path
        self.path = Path(path) if path else None
        self.entries = list(entries) if entries is not None else None
        self.transformer = transformer or SubscriptionTransformer(settings.excluded_email_domains)

    def _read_entries(self) -> List[Dict[str, Any]]:
        if self.entries is not None:
            return self.entries
        if self.path is None:
            return []

        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ManualSourceError(f"Cannot read {self.path}: {e}") from e

        if not isinstance(data, list):
            raise ManualSourceError(f"{self.path} must contain a JSON list")
        return data

    def load(self) -> List[SubscriptionRecord]:
        """
        Validated, classified manual records.

        An unreadable file raises ManualSourceError; a single invalid entry
        is logged and left out so the other subscriptions still load.
        """
        records = []
        skipped = 0
        for index, entry in enumerate(self._read_entries()):
            try:
                records.append(self.transformer.from_manual(entry))
            except (ValidationError, TypeError, ArithmeticError) as e:
                skipped += 1
                logger.warning("Skipping invalid manual subscription", index=index, error=str(e))

        logger.debug(
            "Loaded manual subscriptions",
            count=len(records),
            skipped=skipped,
            path=str(self.path) if self.path else None,
        )
        return records
