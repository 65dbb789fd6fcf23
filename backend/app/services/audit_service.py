# app/services/audit_service.py
# Service responsible for writing profile audit logs to MongoDB

from typing import Dict, Any, Optional
from app.core.config import settings
from app.core.logging_setup import logger, trace_id_var
from app.db.mongo_client import get_database
from app.db.schemas.common_schemas import utc_now
from motor.motor_asyncio import AsyncIOMotorCollection


class AuditService:
    """Records profile mutations in a dedicated MongoDB collection."""

    def __init__(self, collection: Optional[AsyncIOMotorCollection] = None, enabled: Optional[bool] = None):
        self._collection = collection
        self.enabled = settings.AUDIT_LOG_ENABLED if enabled is None else enabled
        self.collection_name = settings.AUDIT_LOG_MONGO_COLLECTION
        logger.info(f"AuditService initialized. Enabled: {self.enabled}")

    def _get_collection(self) -> Optional[AsyncIOMotorCollection]:
        """Lazily resolves the audit collection from the shared database."""
        if not self.enabled:
            return None
        if self._collection is None:
            try:
                self._collection = get_database()[self.collection_name]
            except RuntimeError as e:
                logger.error(f"AuditService failed to get DB collection: {e}")
                self.enabled = False
        return self._collection

    async def ensure_indexes(self) -> None:
        collection = self._get_collection()
        if collection is None:
            return
        try:
            await collection.create_index([("entity_id", 1), ("timestamp", -1)], name="entity_timeline")
            await collection.create_index("actor_id", name="actor")
        except Exception:
            logger.exception("Error ensuring indexes for audit collection.")

    async def log_event(
        self,
        actor_id: str,  # Owner performing the action
        action: str,  # e.g. "create_profile", "add_agency_member"
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        success: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Writes an audit entry. Failures are logged and never reach the caller."""
        collection = self._get_collection()
        if collection is None:
            return

        log_entry = {
            "timestamp": utc_now(),
            "actor_id": actor_id,
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
            "details": details or {},
            "trace_id": trace_id_var.get() or "N/A",
        }
        log = logger.bind(audit_action=action, audit_actor=actor_id, audit_success=success)
        try:
            await collection.insert_one(log_entry)
            log.debug("Audit event logged successfully.")
        except Exception:
            log.exception("Failed to write audit log to MongoDB.")


audit_service = AuditService()
