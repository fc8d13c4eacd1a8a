import numpy as np
import pytest

from site_access.exceptions import InvalidDescriptor, NoCandidatesAvailable, NoFaceDetected, NoMatchFound
from site_access.services import build_services
from site_access.core.config import get_settings
from site_access.types import AccessAction

from conftest import ALICE, BOB, FakeProvider

FRAME = np.zeros((48, 48, 3), dtype=np.uint8)


def test_identify_entry_from_frame(services, people, guard, provider):
    identification = services.recognition.identify(guard, AccessAction.ENTRY, FRAME)
    assert identification.person.id == people["alice"].id
    assert identification.match.distance == pytest.approx(0.0)
    assert identification.inside is False
    assert identification.open_session_id is None
    assert provider.calls == 1


def test_identify_entry_reports_when_already_inside(services, people, guard):
    entry = services.reconciler.enter(guard, people["alice"].id)
    identification = services.recognition.identify_descriptor(guard, AccessAction.ENTRY, ALICE)
    assert identification.inside is True
    assert identification.open_session_id == entry.session.id


def test_no_face_in_frame(services, people, guard, provider):
    provider.descriptor = None
    with pytest.raises(NoFaceDetected):
        services.recognition.identify(guard, AccessAction.ENTRY, FRAME)


def test_no_candidates_is_distinct_from_no_match(services, people, guard):
    with pytest.raises(NoCandidatesAvailable):
        services.recognition.identify_descriptor(guard, AccessAction.EXIT, ALICE)

    with pytest.raises(NoMatchFound):
        services.recognition.identify_descriptor(guard, AccessAction.ENTRY, [0.0, 0.0, 1.0, 0.0])


def test_exit_pool_only_matches_people_inside(services, people, guard, clock):
    services.reconciler.enter(guard, people["bob"].id)
    # Alice is registered but outside, so her face cannot close anyone's session.
    with pytest.raises(NoMatchFound):
        services.recognition.identify_descriptor(guard, AccessAction.EXIT, ALICE)

    identification = services.recognition.identify_descriptor(guard, AccessAction.EXIT, BOB)
    assert identification.person.id == people["bob"].id
    assert identification.inside is True


def test_scan_registers_entry_and_exit(services, site, people, guard, clock):
    identification, result = services.recognition.scan(guard, AccessAction.ENTRY, frame_bgr=FRAME)
    assert identification.person.id == people["alice"].id
    assert result.accepted
    assert result.session.is_open

    clock.advance(hours=9)
    identification, result = services.recognition.scan(guard, AccessAction.EXIT, descriptor=ALICE)
    assert result.accepted
    assert result.session.exit_at == clock.now
    assert not services.reconciler.is_inside(site.id, people["alice"].id)


def test_scan_double_submission_reports_duplicate(services, people, guard, clock):
    services.recognition.scan(guard, AccessAction.ENTRY, descriptor=ALICE)
    clock.advance(seconds=10)
    identification, result = services.recognition.scan(guard, AccessAction.ENTRY, descriptor=ALICE)
    assert identification.person.id == people["alice"].id
    assert result.accepted is False
    assert result.outcome == "duplicate"


def test_invalid_live_descriptor(services, people, guard):
    with pytest.raises(InvalidDescriptor):
        services.recognition.identify_descriptor(guard, AccessAction.ENTRY, [1.0, 0.0])


def test_provider_is_built_lazily_once(store, feed, clock, people, guard):
    built = []

    def _factory():
        built.append(1)
        return FakeProvider(BOB)

    services = build_services(store, get_settings(), feed, clock=clock, threshold=0.6, provider_factory=_factory)
    assert built == []

    services.recognition.identify(guard, AccessAction.ENTRY, FRAME)
    identification = services.recognition.identify(guard, AccessAction.ENTRY, FRAME)
    assert identification.person.id == people["bob"].id
    assert built == [1]


def test_missing_provider_reports_no_face(store, feed, clock, people, guard):
    services = build_services(store, get_settings(), feed, clock=clock, threshold=0.6)
    with pytest.raises(NoFaceDetected):
        services.recognition.identify(guard, AccessAction.ENTRY, FRAME)
