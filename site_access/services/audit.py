from __future__ import annotations

import logging
from typing import Any

from ..exceptions import AccessControlError
from ..store.repository import AccessRepository, new_id, utcnow
from ..types import AuditEvent, OperationContext

logger = logging.getLogger("site_access.audit")


class AuditTrail:
    def __init__(self, repo: AccessRepository) -> None:
        self.repo = repo

    def record(
        self,
        ctx: OperationContext,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        note: str | None = None,
    ) -> AuditEvent | None:
        """Best effort: the audited mutation is already committed, so a failure here is only logged."""
        event = AuditEvent(
            id=new_id(),
            site_id=ctx.site_id,
            action=action,
            user_id=ctx.actor_id,
            role_snapshot=ctx.actor_role,
            entity_type=entity_type,
            entity_id=entity_id,
            before=before,
            after=after,
            note=note,
            created_at=utcnow(),
        )
        try:
            return self.repo.add_audit_event(event)
        except AccessControlError:
            logger.exception("Failed to record audit event %s for %s %s", action, entity_type, entity_id)
            return None

    def list(self, site_id: str, limit: int = 200) -> list[AuditEvent]:
        return self.repo.list_audit_events(site_id, limit=max(1, min(1000, limit)))
