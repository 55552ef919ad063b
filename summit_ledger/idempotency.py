"""
Idempotency Key Registry

Client-supplied idempotency keys make Transfer, Buy and Sell safe to retry:
the first successful call records which ledger record it produced, and any
replay with the same key and the same request returns that record instead of
executing again.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from .errors import ConflictError, InvalidArgumentError
from .storage import StorageInterface, StorageManager, StorageRecord


MAX_KEY_LENGTH = 128


@dataclass
class IdempotencyRecord(StorageRecord):
    """Maps an idempotency key to the record its first execution produced"""
    operation: str
    fingerprint: str
    result_id: str


def request_fingerprint(operation: str, params: Dict[str, Any]) -> str:
    """Stable hash of an operation and its parameters"""
    payload = json.dumps({"operation": operation, "params": params}, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def validate_key(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise InvalidArgumentError(f"Idempotency key must be 1-{MAX_KEY_LENGTH} characters")
    return key


class IdempotencyRegistry:
    """Stored idempotency keys"""

    def __init__(self, storage: StorageInterface, table_name: str = "idempotency_keys"):
        self.records = StorageManager(storage)
        self.table_name = table_name

    def lookup(self, key: str, operation: str, fingerprint: str) -> Optional[str]:
        """
        Return the result id recorded for ``key``, if any

        Raises:
            ConflictError: If the key was used for a different request
        """
        record = self.records.load_record(IdempotencyRecord, self.table_name, key)
        if record is None:
            return None
        if record.operation != operation or record.fingerprint != fingerprint:
            raise ConflictError(
                "Idempotency key was already used for a different request",
                details={"idempotency_key": key, "operation": record.operation}
            )
        return record.result_id

    def remember(self, key: str, operation: str, fingerprint: str, result_id: str, now: datetime) -> None:
        record = IdempotencyRecord(
            id=key,
            created_at=now,
            updated_at=now,
            operation=operation,
            fingerprint=fingerprint,
            result_id=result_id
        )
        self.records.save_record(record, self.table_name)
