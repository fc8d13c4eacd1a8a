from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from ..exceptions import DuplicateSubmission, InvalidTransition, PersonNotFound, SessionNotFound, ValidationFailed
from ..store.repository import AccessRepository, as_utc, new_id, session_to_json, utcnow
from ..types import AccessAction, AccessChange, AccessSession, ChangeKind, OperationContext, TransitionResult
from .audit import AuditTrail
from .realtime import ChangeFeed

logger = logging.getLogger("site_access.reconciler")

Clock = Callable[[], datetime]


def _require_reason(reason: str | None) -> str:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationFailed("A reason is required for this action.")
    return reason


class AccessSessionReconciler:
    """Entry/exit state machine per (site, person): OUTSIDE <-> INSIDE.

    The inside check and the write are separate backend calls, so every write is
    preceded by a fresh re-check and closes are conditional on the row still
    being open. A trailing duplicate window absorbs double submissions.
    """

    def __init__(
        self,
        repo: AccessRepository,
        feed: ChangeFeed,
        audit: AuditTrail,
        duplicate_window: timedelta = timedelta(seconds=120),
        clock: Clock = utcnow,
    ) -> None:
        self.repo = repo
        self.feed = feed
        self.audit = audit
        self.duplicate_window = duplicate_window
        self.clock = clock

    def is_inside(self, site_id: str, person_id: str) -> bool:
        return bool(self.repo.open_sessions(site_id, person_id))

    def apply(
        self,
        ctx: OperationContext,
        action: AccessAction,
        person_id: str,
        observations: str | None = None,
        session_id: str | None = None,
    ) -> TransitionResult:
        if action == AccessAction.ENTRY:
            return self.enter(ctx, person_id, observations=observations)
        return self.exit(ctx, person_id, session_id=session_id)

    def enter(self, ctx: OperationContext, person_id: str, observations: str | None = None) -> TransitionResult:
        person = self.repo.get_person(ctx.site_id, person_id)
        if person is None:
            raise PersonNotFound(f"Person {person_id} not found at site {ctx.site_id}.")

        now = self.clock()
        if self.repo.recent_entries(ctx.site_id, person_id, since=now - self.duplicate_window):
            logger.info("Duplicate entry suppressed for %s at site %s", person_id, ctx.site_id)
            raise DuplicateSubmission(f"Entry for {person.full_name} was already registered moments ago.")

        if self.repo.open_sessions(ctx.site_id, person_id):
            logger.info("Rejected entry for %s: already inside site %s", person_id, ctx.site_id)
            raise InvalidTransition(f"{person.full_name} already has an open entry.")

        session = self.repo.create_session(
            AccessSession(
                id=new_id(),
                site_id=ctx.site_id,
                person_id=person.id,
                entry_at=now,
                observations=(observations or "").strip() or None,
                entry_by_user_id=ctx.actor_id,
                ci_snapshot=person.ci,
                name_snapshot=person.full_name,
                type_snapshot=person.type,
                contractor_snapshot=person.contractor,
                created_at=now,
            )
        )
        logger.info("Entry registered for %s (%s) at site %s", person.full_name, person.id, ctx.site_id)
        self._committed(ctx, ChangeKind.ENTRY, session, "ACCESS_ENTRY", after=session_to_json(session))
        return TransitionResult(
            action=AccessAction.ENTRY,
            accepted=True,
            session=session,
            message=f"Entry registered: {person.full_name}",
        )

    def exit(self, ctx: OperationContext, person_id: str, session_id: str | None = None) -> TransitionResult:
        now = self.clock()
        open_sessions = self.repo.open_sessions(ctx.site_id, person_id)
        if not open_sessions:
            # A repeated exit only counts as a duplicate once nothing is left to close.
            if self.repo.recent_exits(ctx.site_id, person_id, since=now - self.duplicate_window):
                logger.info("Duplicate exit suppressed for %s at site %s", person_id, ctx.site_id)
                raise DuplicateSubmission("This exit was already registered moments ago.")
            raise InvalidTransition("Person has no open entry at this site.")

        if session_id is not None:
            target = next((s for s in open_sessions if s.id == session_id), None)
            if target is None:
                raise InvalidTransition(f"Session {session_id} is not open for this person.")
        else:
            target = open_sessions[-1]
            if len(open_sessions) > 1:
                logger.warning(
                    "Person %s has %d open sessions at site %s; closing the most recent",
                    person_id,
                    len(open_sessions),
                    ctx.site_id,
                )

        closed = self.repo.close_open_session(
            ctx.site_id,
            target.id,
            exit_at=max(now, target.entry_at),
            exit_by_user_id=ctx.actor_id,
        )
        if closed is None:
            logger.info("Session %s was closed or voided concurrently", target.id)
            raise InvalidTransition("This entry was closed or voided by someone else.")

        logger.info("Exit registered for %s at site %s (session %s)", person_id, ctx.site_id, closed.id)
        self._committed(
            ctx,
            ChangeKind.EXIT,
            closed,
            "ACCESS_EXIT",
            before=session_to_json(target),
            after=session_to_json(closed),
        )
        return TransitionResult(
            action=AccessAction.EXIT,
            accepted=True,
            session=closed,
            message=f"Exit registered: {closed.name_snapshot or person_id}",
        )

    def force_exit(self, ctx: OperationContext, session_id: str, reason: str | None) -> TransitionResult:
        reason = _require_reason(reason)
        before = self._get(ctx.site_id, session_id)
        if not before.is_open:
            raise InvalidTransition("Only open entries can be force-closed.")

        closed = self.repo.close_open_session(
            ctx.site_id,
            session_id,
            exit_at=max(self.clock(), before.entry_at),
            exit_by_user_id=ctx.actor_id,
        )
        if closed is None:
            raise InvalidTransition("This entry was closed or voided by someone else.")

        logger.info("Forced exit on session %s at site %s", session_id, ctx.site_id)
        self._committed(
            ctx,
            ChangeKind.FORCE_EXIT,
            closed,
            "ACCESS_LOG_FORCE_EXIT",
            before=session_to_json(before),
            after=session_to_json(closed),
            note=reason,
        )
        return TransitionResult(action=AccessAction.EXIT, accepted=True, session=closed, message="Exit forced.")

    def void(self, ctx: OperationContext, session_id: str, reason: str | None) -> AccessSession:
        reason = _require_reason(reason)
        before = self._get(ctx.site_id, session_id)
        if before.is_voided:
            raise InvalidTransition("This entry is already voided.")

        voided = self.repo.void_session(ctx.site_id, session_id, self.clock(), ctx.actor_id, reason)
        if voided is None:
            raise InvalidTransition("This entry was voided by someone else.")

        logger.info("Voided session %s at site %s", session_id, ctx.site_id)
        self._committed(
            ctx,
            ChangeKind.VOID,
            voided,
            "ACCESS_LOG_VOIDED",
            before=session_to_json(before),
            after=session_to_json(voided),
            note=reason,
        )
        return voided

    def edit(
        self,
        ctx: OperationContext,
        session_id: str,
        reason: str | None,
        entry_at: datetime | None = None,
        exit_at: datetime | None = None,
        observations: str | None = None,
    ) -> AccessSession:
        reason = _require_reason(reason)
        before = self._get(ctx.site_id, session_id)
        if before.is_voided:
            raise InvalidTransition("Voided entries cannot be edited.")

        entry_at, exit_at = as_utc(entry_at), as_utc(exit_at)
        new_entry = entry_at or before.entry_at
        new_exit = exit_at if exit_at is not None else before.exit_at
        if new_exit is not None and new_exit < new_entry:
            raise ValidationFailed("Exit time cannot be earlier than entry time.")

        values: dict = {
            "entry_at": new_entry,
            "observations": observations if observations is not None else before.observations,
        }
        if exit_at is not None:
            values["exit_at"] = exit_at

        updated = self.repo.update_session(ctx.site_id, session_id, values)
        if updated is None:
            raise InvalidTransition("This entry was voided by someone else.")

        logger.info("Edited session %s at site %s", session_id, ctx.site_id)
        self._committed(
            ctx,
            ChangeKind.EDIT,
            updated,
            "ACCESS_LOG_EDITED",
            before=session_to_json(before),
            after=session_to_json(updated),
            note=reason,
        )
        return updated

    def _get(self, site_id: str, session_id: str) -> AccessSession:
        session = self.repo.get_session(site_id, session_id)
        if session is None:
            raise SessionNotFound(f"Access log {session_id} not found at site {site_id}.")
        return session

    def _committed(
        self,
        ctx: OperationContext,
        kind: ChangeKind,
        session: AccessSession,
        audit_action: str,
        before: dict | None = None,
        after: dict | None = None,
        note: str | None = None,
    ) -> None:
        self.audit.record(
            ctx,
            audit_action,
            entity_type="access_log",
            entity_id=session.id,
            before=before,
            after=after,
            note=note,
        )
        self.feed.emit(
            AccessChange(
                site_id=session.site_id,
                kind=kind,
                session_id=session.id,
                person_id=session.person_id,
                occurred_at=self.clock(),
            )
        )
