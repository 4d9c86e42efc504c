"""Batch updates and deletes executed inside a single transaction."""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from .db import transaction
from .models import (
    BulkActivityOperation,
    BulkDeleteResult,
    BulkUpdateResult,
    coerce_key,
)
from .mutation import ActivityMutationGateway

logger = logging.getLogger(__name__)


class BulkOperationAborted(RuntimeError):
    """Raised in strict mode to roll back a batch on its first failed item."""


class _ItemRejected(Exception):
    pass


class BulkOperationCoordinator:
    """Runs per-item gateway calls in one transaction.

    By default a failed item is counted and skipped; the batch still commits
    and reports ``success=True``. With ``strict`` the first failure rolls the
    whole batch back.
    """

    def __init__(self, gateway: ActivityMutationGateway, *, strict: bool = False) -> None:
        self.gateway = gateway
        self.strict = strict

    def bulk_update_activities(
        self, operation: BulkActivityOperation, *, strict: Optional[bool] = None
    ) -> BulkUpdateResult:
        strict = self.strict if strict is None else strict
        if not (operation.updates or operation.add_tag_ids or operation.remove_tag_ids):
            logger.warning("Bulk update requested without any changes")
            return BulkUpdateResult(success=False)

        result = BulkUpdateResult(success=True)
        try:
            with transaction(self.gateway.repositories.conn):
                for raw_key in operation.activity_ids:
                    if self._update_one(raw_key, operation):
                        result.updated += 1
                        continue
                    result.failed += 1
                    if strict:
                        raise BulkOperationAborted(f"Bulk update failed for {raw_key!r}")
        except Exception:
            logger.exception(
                "Bulk update transaction failed activity_count=%s updates=%s",
                len(operation.activity_ids),
                json.dumps(operation.updates, default=str),
            )
            return BulkUpdateResult(success=False, updated=0, failed=result.failed)
        logger.info("Bulk update finished updated=%s failed=%s", result.updated, result.failed)
        return result

    def bulk_delete_activities(
        self, activity_ids: Sequence[Any], *, strict: Optional[bool] = None
    ) -> BulkDeleteResult:
        strict = self.strict if strict is None else strict
        result = BulkDeleteResult(success=True)
        try:
            with transaction(self.gateway.repositories.conn):
                for raw_key in activity_ids:
                    if self._delete_one(raw_key):
                        result.deleted += 1
                        continue
                    result.failed += 1
                    if strict:
                        raise BulkOperationAborted(f"Bulk delete failed for {raw_key!r}")
        except Exception:
            logger.exception(
                "Bulk delete transaction failed activity_count=%s", len(activity_ids)
            )
            return BulkDeleteResult(success=False, deleted=0, failed=result.failed)
        logger.info("Bulk delete finished deleted=%s failed=%s", result.deleted, result.failed)
        return result

    def _update_one(self, raw_key: Any, operation: BulkActivityOperation) -> bool:
        try:
            record_id, source_type = coerce_key(raw_key)
            # One savepoint per item so a field edit never lands without its tag edit.
            with transaction(self.gateway.repositories.conn):
                if operation.updates and not self.gateway.update_unified_activity(
                    record_id, source_type, operation.updates
                ):
                    raise _ItemRejected
                if (operation.add_tag_ids or operation.remove_tag_ids) and not (
                    self.gateway.adjust_tags(
                        record_id,
                        source_type,
                        operation.add_tag_ids,
                        operation.remove_tag_ids,
                    )
                ):
                    raise _ItemRejected
            return True
        except _ItemRejected:
            return False
        except Exception:
            logger.warning("Failed to update activity %r in bulk operation", raw_key, exc_info=True)
            return False

    def _delete_one(self, raw_key: Any) -> bool:
        try:
            record_id, source_type = coerce_key(raw_key)
            return self.gateway.delete_unified_activity(record_id, source_type)
        except Exception:
            logger.warning("Failed to delete activity %r in bulk operation", raw_key, exc_info=True)
            return False
