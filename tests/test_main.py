import pytest
from fastapi.testclient import TestClient

from idcapture.main import create_app
from idcapture.sensors.face_presence import NullFaceDetector
from idcapture.state import VerificationStatus

from conftest import FakeBackend, make_jpeg

BASE = "/subjects/u1/verification"


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def client(settings, backend):
    app = create_app(settings, backend=backend, face_detector=NullFaceDetector())
    with TestClient(app) as test_client:
        yield test_client


def _to_review(client):
    assert client.post(BASE + "/enter").json()["view"] == "capture_flow"
    assert client.post(BASE + "/start").json()["step"] == "details"
    body = client.put(
        BASE + "/details",
        json={"legal_name": "Ada Lovelace", "country": "France", "document_type": "drivers_license"},
    ).json()
    assert body["session"]["document_type"] == "drivers_license"
    assert client.post(BASE + "/advance").json()["step"] == "document_capture"
    doc = client.post(BASE + "/document", files={"photo": ("doc.jpg", make_jpeg(800, 500), "image/jpeg")})
    assert doc.status_code == 200
    assert client.post(BASE + "/advance").json()["step"] == "selfie_capture"
    selfie = client.post(BASE + "/selfie", files={"photo": ("me.jpg", make_jpeg(400, 400), "image/jpeg")})
    assert selfie.json()["hint"] == "ready"
    assert client.post(BASE + "/advance").json()["step"] == "review"
    body = client.put(BASE + "/consents", json={"name_matches": True, "images_clear": True, "corners_visible": True}).json()
    assert body["submit_enabled"] is True


def test_healthcheck_reports_hint_capability(client):
    body = client.get("/healthz").json()

    assert body == {"status": "ok", "face_hint": False}


def test_full_flow_over_http(client, backend):
    _to_review(client)

    response = client.post(BASE + "/submit")

    assert response.status_code == 200
    body = response.json()
    assert body["step"] == "submitted"
    assert body["view"] == "pending_review"
    assert body["session"] is None
    assert body["attempt_id"]
    assert backend.status is VerificationStatus.PENDING
    assert client.get(BASE).status_code == 404
    assert len(client.app.state.registry) == 0


def test_guard_failure_maps_to_422_with_step(client):
    client.post(BASE + "/enter")
    client.post(BASE + "/start")
    client.put(BASE + "/details", json={"legal_name": "Ada", "country": "France", "document_type": "passport"})

    response = client.post(BASE + "/advance")

    assert response.status_code == 422
    assert response.json()["step"] == "details"
    assert "legal name" in response.json()["detail"]


def test_unknown_document_type_is_rejected(client):
    client.post(BASE + "/enter")
    client.post(BASE + "/start")

    response = client.put(BASE + "/details", json={"document_type": "library_card"})

    assert response.status_code == 422


def test_upload_failure_maps_to_502_and_returns_to_review(client, backend):
    _to_review(client)
    backend.fail_put_on = ["selfie"]

    response = client.post(BASE + "/submit")

    assert response.status_code == 502
    assert response.json() == {"detail": "Uploading your selfie failed. Please try again.", "step": "review"}
    assert backend.objects == {}


def test_status_failure_maps_to_502(client, backend):
    backend.fail_status = True

    response = client.post(BASE + "/enter")

    assert response.status_code == 502
    assert response.json()["step"] is None


def test_resubmission_flow(settings):
    backend = FakeBackend(status=VerificationStatus.UNVERIFIED, comment="glare on photo")
    app = create_app(settings, backend=backend, face_detector=NullFaceDetector())
    with TestClient(app) as client:
        body = client.post(BASE + "/enter").json()
        assert body["view"] == "needs_resubmission"
        assert body["comment"] == "glare on photo"

        body = client.post(BASE + "/resubmit").json()

    assert body["view"] == "capture_flow"
    assert body["step"] == "intro"
    assert backend.resubmit_calls == ["u1"]


def test_pending_can_be_forced_into_capture(settings):
    backend = FakeBackend(status=VerificationStatus.PENDING)
    app = create_app(settings, backend=backend, face_detector=NullFaceDetector())
    with TestClient(app) as client:
        assert client.post(BASE + "/enter").json()["view"] == "pending_review"
        body = client.post(BASE + "/enter", json={"force_resubmit": True}).json()

    assert body["view"] == "capture_flow"


def test_capture_without_photo_or_camera_is_rejected(client):
    client.post(BASE + "/enter")
    client.post(BASE + "/start")
    client.put(BASE + "/details", json={"legal_name": "Ada Lovelace", "country": "France", "document_type": "passport"})
    client.post(BASE + "/advance")

    response = client.post(BASE + "/document")

    assert response.status_code == 422


def test_cancel_drops_session(client):
    client.post(BASE + "/enter")
    client.post(BASE + "/start")

    body = client.post(BASE + "/cancel").json()

    assert body["session"] is None
    assert body["step"] is None



def test_reads_do_not_create_controllers(client):
    for i in range(20):
        assert client.get(f"/subjects/nobody-{i}/verification").status_code == 404

    assert len(client.app.state.registry) == 0


def test_only_subjects_with_live_sessions_are_kept(settings):
    backend = FakeBackend(status=VerificationStatus.PENDING)
    app = create_app(settings, backend=backend, face_detector=NullFaceDetector())
    with TestClient(app) as client:
        assert client.post(BASE + "/enter").json()["view"] == "pending_review"
        assert len(app.state.registry) == 0

        client.post(BASE + "/enter", json={"force_resubmit": True})
        assert len(app.state.registry) == 1
        assert client.get(BASE).json()["step"] == "intro"

        client.post(BASE + "/cancel")
        assert len(app.state.registry) == 0


def test_forced_entry_with_review_comment_stays_on_resubmission(settings):
    backend = FakeBackend(status=VerificationStatus.UNVERIFIED, comment="glare on photo")
    app = create_app(settings, backend=backend, face_detector=NullFaceDetector())
    with TestClient(app) as client:
        body = client.post(BASE + "/enter", json={"force_resubmit": True}).json()

    assert body["view"] == "needs_resubmission"
    assert body["session"] is None
    assert backend.resubmit_calls == []


def test_unhandled_errors_hide_internals(settings):
    app = create_app(settings, backend=FakeBackend(), face_detector=NullFaceDetector())

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    with TestClient(app, raise_server_exceptions=False) as client:
        response = client.get("/boom")

    assert response.status_code == 500
    assert "secret" not in response.text
    assert response.text == "Internal server error"
