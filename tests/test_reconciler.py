from datetime import timedelta

import pytest

from site_access.exceptions import (
    DuplicateSubmission,
    InvalidTransition,
    PersonNotFound,
    SessionNotFound,
    ValidationFailed,
)
from site_access.types import AccessAction, ChangeKind


def _open_count(services, site_id, person_id):
    return len(services.repo.open_sessions(site_id, person_id))


def test_entry_then_exit_round_trip(services, site, people, guard, clock):
    alice = people["alice"]
    entry = services.reconciler.enter(guard, alice.id, observations="  casco rojo ")
    assert entry.accepted
    assert entry.session.is_open
    assert entry.session.observations == "casco rojo"
    assert entry.session.name_snapshot == "Alice Mamani"
    assert entry.session.ci_snapshot == "4455667"
    assert entry.session.contractor_snapshot == "Constructora Andina"
    assert entry.session.entry_by_user_id == "guard-1"
    assert services.reconciler.is_inside(site.id, alice.id)

    clock.advance(hours=8)
    result = services.reconciler.exit(guard, alice.id)
    assert result.accepted
    assert result.action == AccessAction.EXIT
    assert result.session.id == entry.session.id
    assert result.session.exit_at == clock.now
    assert not services.reconciler.is_inside(site.id, alice.id)


def test_second_entry_while_inside_is_rejected(services, site, people, guard, clock):
    services.reconciler.enter(guard, people["alice"].id)
    clock.advance(minutes=5)
    with pytest.raises(InvalidTransition):
        services.reconciler.enter(guard, people["alice"].id)
    assert _open_count(services, site.id, people["alice"].id) == 1


def test_entry_within_duplicate_window_is_suppressed(services, site, people, guard, clock):
    services.reconciler.enter(guard, people["alice"].id)
    clock.advance(seconds=10)
    with pytest.raises(DuplicateSubmission):
        services.reconciler.enter(guard, people["alice"].id)
    assert _open_count(services, site.id, people["alice"].id) == 1


def test_reentry_after_exit_waits_for_duplicate_window(services, site, people, guard, clock):
    alice = people["alice"]
    services.reconciler.enter(guard, alice.id)
    clock.advance(seconds=30)
    services.reconciler.exit(guard, alice.id)

    clock.advance(seconds=30)
    with pytest.raises(DuplicateSubmission):
        services.reconciler.enter(guard, alice.id)

    clock.advance(minutes=2)
    assert services.reconciler.enter(guard, alice.id).accepted
    assert _open_count(services, site.id, alice.id) == 1


def test_exit_without_open_session_is_rejected(services, people, guard):
    with pytest.raises(InvalidTransition):
        services.reconciler.exit(guard, people["bob"].id)


def test_repeated_exit_is_a_duplicate(services, people, guard, clock):
    services.reconciler.enter(guard, people["bob"].id)
    clock.advance(hours=1)
    services.reconciler.exit(guard, people["bob"].id)
    clock.advance(seconds=5)
    with pytest.raises(DuplicateSubmission):
        services.reconciler.exit(guard, people["bob"].id)


def test_exit_after_quick_reentry_closes_new_session(services, site, people, guard, clock):
    alice = people["alice"]
    services.reconciler.enter(guard, alice.id)
    clock.advance(seconds=10)
    services.reconciler.exit(guard, alice.id)

    clock.advance(seconds=115)
    reentry = services.reconciler.enter(guard, alice.id)
    assert reentry.accepted

    clock.advance(seconds=5)
    result = services.reconciler.exit(guard, alice.id)
    assert result.accepted
    assert result.session.id == reentry.session.id
    assert not services.reconciler.is_inside(site.id, alice.id)


def test_entry_for_unknown_person(services, guard):
    with pytest.raises(PersonNotFound):
        services.reconciler.enter(guard, "missing-person")


def test_at_most_one_open_session_after_mixed_sequence(services, site, people, guard, clock):
    alice = people["alice"]
    for step in ("entry", "entry", "exit", "exit", "entry", "exit", "entry", "entry"):
        clock.advance(minutes=3)
        try:
            services.reconciler.apply(guard, AccessAction(step), alice.id)
        except (InvalidTransition, DuplicateSubmission):
            pass
        assert _open_count(services, site.id, alice.id) <= 1


def test_concurrent_close_loses_cleanly(services, site, people, guard, supervisor, clock, monkeypatch):
    alice = people["alice"]
    services.reconciler.enter(guard, alice.id)
    stale = services.repo.open_sessions(site.id, alice.id)

    clock.advance(hours=1)
    services.reconciler.force_exit(supervisor, stale[0].id, "Salida no registrada")
    clock.advance(minutes=3)

    # The second guard still sees the session it loaded before the force exit.
    monkeypatch.setattr(services.repo, "open_sessions", lambda site_id, person_id=None: stale)
    with pytest.raises(InvalidTransition):
        services.reconciler.exit(guard, alice.id)


def test_exit_time_never_precedes_entry(services, people, guard, clock):
    entry = services.reconciler.enter(guard, people["alice"].id)
    clock.advance(minutes=-10)
    result = services.reconciler.exit(guard, people["alice"].id)
    assert result.session.exit_at == entry.session.entry_at


def test_each_accepted_transition_emits_one_change(services, feed, site, people, guard, clock):
    received = []
    feed.on_change(site.id, received.append)

    services.reconciler.enter(guard, people["alice"].id)
    with pytest.raises(DuplicateSubmission):
        services.reconciler.enter(guard, people["alice"].id)
    clock.advance(hours=2)
    services.reconciler.exit(guard, people["alice"].id)

    assert [change.kind for change in received] == [ChangeKind.ENTRY, ChangeKind.EXIT]
    assert all(change.person_id == people["alice"].id for change in received)


def test_force_exit_requires_reason_and_is_audited(services, site, people, guard, supervisor, clock):
    entry = services.reconciler.enter(guard, people["bob"].id)
    with pytest.raises(ValidationFailed):
        services.reconciler.force_exit(supervisor, entry.session.id, "   ")

    clock.advance(hours=14)
    result = services.reconciler.force_exit(supervisor, entry.session.id, "Olvidó marcar salida")
    assert result.session.exit_by_user_id == "super-1"
    assert not services.reconciler.is_inside(site.id, people["bob"].id)

    event = services.audit.list(site.id)[0]
    assert event.action == "ACCESS_LOG_FORCE_EXIT"
    assert event.note == "Olvidó marcar salida"
    assert event.before["exit_at"] is None
    assert event.after["exit_at"] is not None

    with pytest.raises(InvalidTransition):
        services.reconciler.force_exit(supervisor, entry.session.id, "otra vez")


def test_void_removes_session_from_inside_and_blocks_edits(services, site, people, guard, supervisor, clock):
    entry = services.reconciler.enter(guard, people["alice"].id)
    voided = services.reconciler.void(supervisor, entry.session.id, "Registro erróneo")
    assert voided.is_voided
    assert voided.void_reason == "Registro erróneo"
    assert voided.voided_by_user_id == "super-1"
    assert not services.reconciler.is_inside(site.id, people["alice"].id)

    with pytest.raises(InvalidTransition):
        services.reconciler.void(supervisor, entry.session.id, "de nuevo")
    with pytest.raises(InvalidTransition):
        services.reconciler.edit(supervisor, entry.session.id, "ajuste", observations="x")

    event = services.audit.list(site.id)[0]
    assert event.action == "ACCESS_LOG_VOIDED"
    assert event.before["voided_at"] is None


def test_voided_entry_does_not_count_as_duplicate(services, site, people, guard, supervisor, clock):
    entry = services.reconciler.enter(guard, people["alice"].id)
    services.reconciler.void(supervisor, entry.session.id, "Persona equivocada")
    clock.advance(seconds=20)
    assert services.reconciler.enter(guard, people["alice"].id).accepted


def test_edit_changes_times_and_keeps_observations(services, site, people, guard, supervisor, clock):
    entry = services.reconciler.enter(guard, people["alice"].id, observations="turno tarde")
    clock.advance(hours=3)
    services.reconciler.exit(guard, people["alice"].id)

    new_entry = entry.session.entry_at - timedelta(minutes=15)
    edited = services.reconciler.edit(supervisor, entry.session.id, "Hora corregida", entry_at=new_entry)
    assert edited.entry_at == new_entry
    assert edited.observations == "turno tarde"

    with pytest.raises(ValidationFailed):
        services.reconciler.edit(
            supervisor, entry.session.id, "mal", exit_at=new_entry - timedelta(minutes=1)
        )
    with pytest.raises(ValidationFailed):
        services.reconciler.edit(supervisor, entry.session.id, "", observations="sin motivo")

    event = services.audit.list(site.id)[0]
    assert event.action == "ACCESS_LOG_EDITED"
    assert event.note == "Hora corregida"
    assert event.user_id == "super-1"


def test_supervisor_tools_on_unknown_session(services, supervisor):
    with pytest.raises(SessionNotFound):
        services.reconciler.force_exit(supervisor, "nope", "motivo")
    with pytest.raises(SessionNotFound):
        services.reconciler.void(supervisor, "nope", "motivo")


def test_audit_failure_does_not_undo_transition(services, site, people, guard, monkeypatch):
    from site_access.exceptions import BackendUnavailable

    def _broken(event):
        raise BackendUnavailable("audit table offline")

    monkeypatch.setattr(services.repo, "add_audit_event", _broken)
    result = services.reconciler.enter(guard, people["alice"].id)
    assert result.accepted
    assert services.reconciler.is_inside(site.id, people["alice"].id)
