import base64

import cv2
import numpy as np
import pytest
from fastapi.testclient import TestClient

from site_access.api.deps import services_dep
from site_access.core.security import create_access_token
from site_access.main import app

from conftest import ALICE, BOB

API = "/api/v1"


@pytest.fixture()
def client(services):
    app.dependency_overrides[services_dep] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(role="guard", subject="guard-1"):
    return {"Authorization": f"Bearer {create_access_token(subject, role)}"}


def _png_base64():
    ok, encoded = cv2.imencode(".png", np.zeros((32, 32, 3), dtype=np.uint8))
    assert ok
    return base64.b64encode(encoded.tobytes()).decode("ascii")


def test_requires_bearer_token(client, site):
    assert client.get(f"{API}/sites/{site.id}/dashboard").status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert client.get(f"{API}/sites/{site.id}/dashboard", headers=bad).status_code == 401


def test_supervisor_only_routes_reject_guards(client, site):
    response = client.post(f"{API}/sites", json={"name": "Obra Este"}, headers=_auth("guard"))
    assert response.status_code == 403


def test_create_site_and_settings(client):
    response = client.post(f"{API}/sites", json={"name": "Obra Este"}, headers=_auth("supervisor", "super-1"))
    assert response.status_code == 200
    site = response.json()
    assert site["timezone"] == "America/La_Paz"

    response = client.put(
        f"{API}/sites/{site['id']}/settings",
        json={"warn_hours": 8, "crit_hours": 10, "seguro_warn_days": 20},
        headers=_auth("supervisor", "super-1"),
    )
    assert response.status_code == 200
    assert response.json()["warn_hours"] == 8

    response = client.get(f"{API}/sites/{site['id']}/settings", headers=_auth())
    assert response.json()["crit_hours"] == 10


def test_unknown_site_is_404(client):
    response = client.get(f"{API}/sites/missing/dashboard", headers=_auth())
    assert response.status_code == 404


def test_register_person_and_search(client, site):
    response = client.post(
        f"{API}/sites/{site.id}/people",
        json={"full_name": "Diego Choque", "ci": "5566778", "type": "worker", "descriptor": BOB},
        headers=_auth(),
    )
    assert response.status_code == 200
    person = response.json()
    assert person["has_descriptor"] is True
    assert "face_descriptor" not in person

    duplicate = client.post(
        f"{API}/sites/{site.id}/people",
        json={"full_name": "Otro Nombre", "ci": "5566778"},
        headers=_auth(),
    )
    assert duplicate.status_code == 422
    assert duplicate.json()["code"] == "validation_failed"

    response = client.get(f"{API}/sites/{site.id}/people/search", params={"q": "choque"}, headers=_auth())
    assert [item["person"]["id"] for item in response.json()] == [person["id"]]
    assert response.json()[0]["inside"] is False


def test_wrong_descriptor_length_is_rejected(client, site, people):
    response = client.put(
        f"{API}/sites/{site.id}/people/{people['carol'].id}/descriptor",
        json={"descriptor": [0.1, 0.2]},
        headers=_auth(),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_descriptor"


def test_enroll_descriptor_from_image(client, site, people, provider):
    provider.descriptor = [0.0, 0.0, 1.0, 0.0]
    response = client.put(
        f"{API}/sites/{site.id}/people/{people['carol'].id}/descriptor",
        json={"image": _png_base64()},
        headers=_auth(),
    )
    assert response.status_code == 200
    assert response.json()["has_descriptor"] is True


def test_manual_entry_exit_and_duplicate(client, site, people, clock):
    person_id = people["carol"].id
    response = client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": person_id}, headers=_auth())
    assert response.status_code == 200
    body = response.json()
    assert body["accepted"] is True
    assert body["outcome"] == "accepted"
    assert body["session"]["is_open"] is True
    assert body["session"]["entry_by_user_id"] == "guard-1"

    clock.advance(seconds=10)
    response = client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": person_id}, headers=_auth())
    assert response.status_code == 200
    assert response.json()["accepted"] is False
    assert response.json()["outcome"] == "duplicate"

    clock.advance(minutes=5)
    response = client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": person_id}, headers=_auth())
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"

    response = client.post(f"{API}/sites/{site.id}/access/exit", json={"person_id": person_id}, headers=_auth())
    assert response.json()["accepted"] is True
    assert response.json()["session"]["is_open"] is False


def test_identify_outcomes(client, site, people):
    url = f"{API}/sites/{site.id}/recognitions/identify"

    response = client.post(url, json={"action": "exit", "descriptor": ALICE}, headers=_auth())
    assert response.status_code == 200
    assert response.json() == {
        "matched": False,
        "outcome": "no_candidates",
        "message": response.json()["message"],
        "person": None,
        "distance": None,
        "inside": None,
        "open_session_id": None,
    }

    response = client.post(url, json={"action": "entry", "descriptor": [0.0, 0.0, 0.0, 1.0]}, headers=_auth())
    assert response.json()["outcome"] == "no_match"

    response = client.post(url, json={"action": "entry", "descriptor": BOB}, headers=_auth())
    body = response.json()
    assert body["matched"] is True
    assert body["person"]["full_name"] == "Bob Quispe"
    assert body["inside"] is False


def test_identify_requires_exactly_one_source(client, site, people):
    url = f"{API}/sites/{site.id}/recognitions/identify"
    response = client.post(url, json={"action": "entry"}, headers=_auth())
    assert response.status_code == 422


def test_scan_from_image_registers_entry(client, site, people, provider):
    response = client.post(
        f"{API}/sites/{site.id}/recognitions/scan",
        json={"action": "entry", "image": _png_base64(), "observations": "con casco"},
        headers=_auth(),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["matched"] is True
    assert body["person"]["id"] == people["alice"].id
    assert body["transition"]["accepted"] is True
    assert body["transition"]["session"]["observations"] == "con casco"
    assert provider.calls == 1


def test_scan_with_no_face(client, site, people, provider):
    provider.descriptor = None
    response = client.post(
        f"{API}/sites/{site.id}/recognitions/scan",
        json={"action": "entry", "image": _png_base64()},
        headers=_auth(),
    )
    assert response.status_code == 200
    assert response.json()["matched"] is False
    assert response.json()["outcome"] == "no_face"
    assert response.json()["transition"] is None


def test_undecodable_image(client, site, people):
    response = client.post(
        f"{API}/sites/{site.id}/recognitions/scan",
        json={"action": "entry", "image": base64.b64encode(b"not an image").decode("ascii")},
        headers=_auth(),
    )
    assert response.status_code == 422
    assert response.json()["code"] == "validation_failed"


def test_supervisor_session_tools(client, site, people, clock):
    entry = client.post(
        f"{API}/sites/{site.id}/access/entry", json={"person_id": people["alice"].id}, headers=_auth()
    ).json()
    session_id = entry["session"]["id"]
    sup = _auth("supervisor", "super-1")

    response = client.post(
        f"{API}/sites/{site.id}/sessions/{session_id}/force-exit", json={"reason": "x"}, headers=_auth()
    )
    assert response.status_code == 403

    response = client.patch(
        f"{API}/sites/{site.id}/sessions/{session_id}",
        json={"reason": "Nota del supervisor", "observations": "turno noche"},
        headers=sup,
    )
    assert response.status_code == 200
    assert response.json()["observations"] == "turno noche"

    clock.advance(hours=13)
    response = client.post(
        f"{API}/sites/{site.id}/sessions/{session_id}/force-exit", json={"reason": "No marcó salida"}, headers=sup
    )
    assert response.status_code == 200
    assert response.json()["session"]["exit_by_user_id"] == "super-1"

    response = client.post(f"{API}/sites/{site.id}/sessions/{session_id}/void", json={"reason": "Error"}, headers=sup)
    assert response.status_code == 200
    assert response.json()["void_reason"] == "Error"

    response = client.post(f"{API}/sites/{site.id}/sessions/{session_id}/void", json={"reason": "Otra"}, headers=sup)
    assert response.status_code == 409

    response = client.get(f"{API}/sites/{site.id}/sessions", params={"q": "Alice"}, headers=_auth())
    assert [row["id"] for row in response.json()] == [session_id]

    response = client.get(f"{API}/sites/{site.id}/audit", headers=sup)
    actions = [event["action"] for event in response.json()]
    assert actions[:4] == ["ACCESS_LOG_VOIDED", "ACCESS_LOG_FORCE_EXIT", "ACCESS_LOG_EDITED", "ACCESS_ENTRY"]


def test_missing_session_is_404(client, site):
    response = client.post(
        f"{API}/sites/{site.id}/sessions/missing/void",
        json={"reason": "x"},
        headers=_auth("supervisor"),
    )
    assert response.status_code == 404
    assert response.json()["code"] == "session_not_found"


def test_dashboard(client, site, people):
    client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": people["alice"].id}, headers=_auth())
    response = client.get(f"{API}/sites/{site.id}/dashboard", headers=_auth())
    assert response.status_code == 200
    body = response.json()
    assert body["inside_now"] == 1
    assert body["inside"][0]["full_name"] == "Alice Mamani"
    assert body["contractors"][0]["contractor"] == "Constructora Andina"


def test_websocket_receives_site_changes(store, clock, provider, site, people):
    from site_access.core.config import get_settings
    from site_access.services import build_services
    from site_access.services.realtime import change_feed

    services = build_services(store, get_settings(), change_feed, provider=provider, clock=clock, threshold=0.6)
    app.dependency_overrides[services_dep] = lambda: services
    token = create_access_token("guard-1", "guard")
    try:
        with TestClient(app) as client:
            with client.websocket_connect(f"/ws/sites/{site.id}?token={token}") as ws:
                ws.send_text("ping")
                assert ws.receive_json() == {"type": "pong"}

                response = client.post(
                    f"{API}/sites/{site.id}/access/entry",
                    json={"person_id": people["bob"].id},
                    headers=_auth(),
                )
                assert response.json()["accepted"] is True
                message = ws.receive_json()
    finally:
        app.dependency_overrides.clear()

    assert message["type"] == "access_change"
    assert message["payload"]["kind"] == "entry"
    assert message["payload"]["person_id"] == people["bob"].id
    assert message["payload"]["session_id"] == response.json()["session"]["id"]


def test_websocket_rejects_missing_token(site):
    from starlette.websockets import WebSocketDisconnect

    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect(f"/ws/sites/{site.id}?token=not-a-token"):
            pass


def test_websocket_rejects_unknown_role(client, site):
    from starlette.websockets import WebSocketDisconnect

    token = create_access_token("someone", "visitor")
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/sites/{site.id}?token={token}"):
            pass
    assert excinfo.value.code == 4403


def test_websocket_rejects_unknown_site(client, site):
    from starlette.websockets import WebSocketDisconnect

    token = create_access_token("guard-1", "guard")
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/ws/sites/missing-site?token={token}"):
            pass
    assert excinfo.value.code == 4404


def test_image_decoding_runs_in_worker_threads(client, site, people, provider, monkeypatch):
    import asyncio

    from site_access.services import recognition as recognition_module

    real_decode = recognition_module.decode_image
    threads = []

    def _decode(image):
        try:
            asyncio.get_running_loop()
            threads.append("event-loop")
        except RuntimeError:
            threads.append("worker")
        return real_decode(image)

    monkeypatch.setattr(recognition_module, "decode_image", _decode)
    client.put(
        f"{API}/sites/{site.id}/people/{people['carol'].id}/descriptor",
        json={"image": _png_base64()},
        headers=_auth(),
    )
    client.post(
        f"{API}/sites/{site.id}/recognitions/identify",
        json={"action": "entry", "image": _png_base64()},
        headers=_auth(),
    )
    assert threads == ["worker", "worker"]


def test_delete_person_endpoint(client, site, people):
    carol = people["carol"].id
    assert client.delete(f"{API}/sites/{site.id}/people/{carol}", headers=_auth()).status_code == 403

    response = client.delete(f"{API}/sites/{site.id}/people/{carol}", headers=_auth("supervisor", "super-1"))
    assert response.status_code == 200
    assert response.json()["id"] == carol
    assert client.get(f"{API}/sites/{site.id}/people/{carol}", headers=_auth()).status_code == 404


def test_delete_person_with_history_conflicts(client, site, people):
    alice = people["alice"].id
    client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": alice}, headers=_auth())
    response = client.delete(f"{API}/sites/{site.id}/people/{alice}", headers=_auth("supervisor", "super-1"))
    assert response.status_code == 409
    assert response.json()["code"] == "record_in_use"


def test_favorites_endpoints(client, site, people):
    alice = people["alice"].id
    base = f"{API}/sites/{site.id}/favorites"
    assert client.put(f"{base}/{alice}", headers=_auth()).json() == {
        "person_id": alice,
        "favorite": True,
        "changed": True,
    }
    assert client.put(f"{base}/{alice}", headers=_auth()).json()["changed"] is False

    client.post(f"{API}/sites/{site.id}/access/entry", json={"person_id": alice}, headers=_auth())
    items = client.get(base, headers=_auth()).json()
    assert len(items) == 1
    assert items[0]["full_name"] == "Alice Mamani"
    assert items[0]["inside"] is True
    assert items[0]["status"] == "ok"

    assert client.delete(f"{base}/{alice}", headers=_auth()).json()["changed"] is True
    assert client.get(base, headers=_auth()).json() == []
    assert client.put(f"{base}/missing", headers=_auth()).status_code == 404


def test_insurance_update_and_dashboard_warning(client, site, people):
    bob = people["bob"].id
    expiry = "2026-03-02"
    response = client.put(
        f"{API}/sites/{site.id}/people/{bob}/insurance",
        json={"insurance_number": "CNS-2", "insurance_expiry": expiry},
        headers=_auth("supervisor", "super-1"),
    )
    assert response.status_code == 200
    assert response.json()["insurance_expiry"] == expiry

    warnings = client.get(f"{API}/sites/{site.id}/dashboard", headers=_auth()).json()["insurance_warnings"]
    assert [item["person_id"] for item in warnings] == [bob]
