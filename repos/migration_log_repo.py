from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from google.cloud.firestore_v1.base_query import FieldFilter

from models.identifiers import describe
from models.schema import COL_MIGRATION_LOGS
from repos.document_repo import snapshot_to_dict
from storage.batch_writer import Write
from storage.firestore_client import DataStore
from utils.request_context import get_run_id


class MigrationLogRepository:
    """
    Append-only trail in migration_logs/{auto_id}.

    Entries are staged into the same batch as the change they describe, so a
    change and its log entry commit (or fail) together.
    """

    def __init__(self, store: DataStore):
        self.store = store

    def entry_write(
        self,
        tool: str,
        action: str,
        collection: str,
        doc_id: str,
        field: Optional[str] = None,
        before: Any = None,
        after: Any = None,
    ) -> Write:
        ref = self.store.collection(COL_MIGRATION_LOGS).document()
        data: Dict[str, Any] = {
            "run_id": get_run_id(),
            "tool": tool,
            "action": action,
            "collection": collection,
            "target_doc_id": doc_id,
            "field": field,
            "before": describe(before) if before is not None else None,
            "after": describe(after) if after is not None else None,
            "at": datetime.now(timezone.utc).isoformat(),
        }
        return ("set", ref, data)

    def list_for_run(self, run_id: str, limit: int = 5000) -> List[Dict[str, Any]]:
        q = self.store.collection(COL_MIGRATION_LOGS).where(filter=FieldFilter("run_id", "==", run_id)).limit(limit)
        return [snapshot_to_dict(s) for s in q.stream()]
