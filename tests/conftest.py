import os
import tempfile
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("STORE_BACKEND", "sql")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "site_access_test_logs"))
os.environ.setdefault("JWT_SECRET", "test-secret-for-site-access")
os.environ.setdefault("DESCRIPTOR_CIPHER_KEY", "test-descriptor-key")
os.environ.setdefault("DESCRIPTOR_LENGTH", "4")
os.environ.setdefault("MATCH_DISTANCE_THRESHOLD", "0.6")

import numpy as np
import pytest

from site_access.core.config import get_settings
from site_access.db.session import build_engine, build_session_factory, init_db
from site_access.services import build_services
from site_access.services.realtime import ChangeFeed
from site_access.store import SqlTableStore
from site_access.types import OperationContext, PersonType, Role

ALICE = [1.0, 0.0, 0.0, 0.0]
BOB = [0.0, 1.0, 0.0, 0.0]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeProvider:
    descriptor_length = 4
    distance_threshold = 0.6

    def __init__(self, descriptor=None) -> None:
        self.descriptor = descriptor
        self.calls = 0

    def extract(self, frame_bgr):
        self.calls += 1
        if self.descriptor is None:
            return None
        return np.asarray(self.descriptor, dtype=np.float32)


@pytest.fixture()
def clock():
    return FakeClock(datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def feed():
    return ChangeFeed()


@pytest.fixture()
def provider():
    return FakeProvider(ALICE)


@pytest.fixture()
def store():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield SqlTableStore(build_session_factory(engine))
    engine.dispose()


@pytest.fixture()
def services(store, feed, clock, provider):
    return build_services(store, get_settings(), feed, provider=provider, clock=clock, threshold=0.6)


@pytest.fixture()
def site(services):
    return services.sites.create("Obra Torre Norte", "America/La_Paz")


@pytest.fixture()
def guard(site):
    return OperationContext(site_id=site.id, actor_id="guard-1", actor_role=Role.GUARD)


@pytest.fixture()
def supervisor(site):
    return OperationContext(site_id=site.id, actor_id="super-1", actor_role=Role.SUPERVISOR)


@pytest.fixture()
def people(services, guard):
    alice = services.people.register(
        guard, "Alice Mamani", "4455667", PersonType.WORKER, contractor="Constructora Andina", descriptor=ALICE
    )
    bob = services.people.register(guard, "Bob Quispe", "7788990", PersonType.WORKER, descriptor=BOB)
    carol = services.people.register(guard, "Carol Flores", "1122334", PersonType.VISITOR)
    return {"alice": alice, "bob": bob, "carol": carol}
