"""Tests for the RTMP bridge router."""

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient

from app.api.v1.dependency import User, get_bridge_service, get_current_user
from app.api.v1.errors import app_error_handler, app_validation_exception_handler
from app.api.v1.routers.rtmp_bridge import router
from app.domain.live.bridge._registry import SessionRegistry
from app.domain.live.bridge.bridge_domain import BridgeService
from app.utils.app_errors import AppError
from tests.fixtures.bridge_fixtures import FakeLauncher

URL = "/live/rtmp-bridge"
START = {"action": "start", "sessionId": "s1", "ingestUrl": "rtmp://live.example.com/app", "streamKey": "k"}


class Caller:
    """Mutable identity returned by the auth override."""

    def __init__(self, user_id: str = "alice"):
        self.user_id = user_id

    def __call__(self) -> User:
        return User(user_id=self.user_id)


@pytest.fixture
def caller() -> Caller:
    return Caller()


@pytest.fixture
def test_app(caller: Caller, bridge_service: BridgeService) -> FastAPI:
    """Create FastAPI test app with dependency overrides."""
    app = FastAPI()

    app.dependency_overrides[get_current_user] = caller
    app.dependency_overrides[get_bridge_service] = lambda: bridge_service

    app.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]

    app.include_router(router)
    return app


@pytest.fixture
def client(test_app: FastAPI):
    # One event loop for the whole test so encoder handles outlive a request
    with TestClient(test_app) as c:
        yield c


def push(client: TestClient, data: bytes, session_id: str | None = "s1"):
    headers = {"content-type": "application/octet-stream"}
    if session_id is not None:
        headers["x-session-id"] = session_id
    return client.put(URL, content=data, headers=headers)


# ==================== START ====================


class TestStart:
    def test_start_success(self, client: TestClient, fake_launcher: FakeLauncher):
        # Act
        response = client.post(URL, json=START)

        # Assert
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert fake_launcher.launched == [("s1", "rtmp://live.example.com/app", "k")]

    def test_action_defaults_to_start(self, client: TestClient, fake_launcher: FakeLauncher):
        body = {k: v for k, v in START.items() if k != "action"}

        response = client.post(URL, json=body)

        assert response.status_code == 200
        assert len(fake_launcher.launched) == 1

    def test_rtmp_url_alias(self, client: TestClient, fake_launcher: FakeLauncher):
        body = {"sessionId": "s1", "rtmpUrl": "rtmp://other/app", "streamKey": "k"}

        response = client.post(URL, json=body)

        assert response.status_code == 200
        assert fake_launcher.launched[0][1] == "rtmp://other/app"

    @pytest.mark.parametrize("missing", ["ingestUrl", "streamKey"])
    def test_start_missing_rtmp_parameters(self, client: TestClient, fake_launcher: FakeLauncher, missing: str):
        # Arrange
        body = {k: v for k, v in START.items() if k != missing}

        # Act
        response = client.post(URL, json=body)

        # Assert
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["errcode"] == "E_INVALID_PARAMS"
        assert "Missing RTMP parameters" in data["errmesg"]
        assert fake_launcher.launched == []

    def test_missing_session_id(self, client: TestClient):
        response = client.post(URL, json={"action": "status"})

        assert response.status_code == 400
        assert "sessionId" in response.json()["errmesg"]

    def test_blank_session_id(self, client: TestClient):
        response = client.post(URL, json={**START, "sessionId": "   "})

        assert response.status_code == 400

    def test_invalid_action(self, client: TestClient):
        response = client.post(URL, json={"action": "rewind", "sessionId": "s1"})

        assert response.status_code == 400
        assert response.json()["errmesg"] == "Invalid action: rewind"

    @pytest.mark.parametrize(
        "ingest_url",
        ["/var/www/html", "file:///tmp/out", "http://live.example.com/app", "rtmp:///app"],
    )
    def test_non_rtmp_ingest_url_rejected(self, client: TestClient, fake_launcher: FakeLauncher, ingest_url: str):
        # Arrange
        body = {**START, "ingestUrl": ingest_url, "streamKey": "shell.flv"}

        # Act
        response = client.post(URL, json=body)

        # Assert
        assert response.status_code == 400
        data = response.json()
        assert data["success"] is False
        assert data["errcode"] == "E_INVALID_PARAMS"
        assert "ingestUrl" in data["errmesg"] or "ingest_url" in data["errmesg"]
        assert fake_launcher.launched == []

    @pytest.mark.parametrize("stream_key", ["../../tmp/x", "live key"])
    def test_malformed_stream_key_rejected(self, client: TestClient, fake_launcher: FakeLauncher, stream_key: str):
        response = client.post(URL, json={**START, "streamKey": stream_key})

        assert response.status_code == 400
        assert response.json()["errcode"] == "E_INVALID_PARAMS"
        assert stream_key not in response.json()["errmesg"]
        assert fake_launcher.launched == []

    def test_malformed_json_is_bad_request(self, client: TestClient, fake_launcher: FakeLauncher):
        # Act
        response = client.post(URL, content=b"{not json", headers={"content-type": "application/json"})

        # Assert
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["errcode"] == "E_INVALID_PARAMS"
        assert fake_launcher.launched == []

    def test_spawn_failure(self, client: TestClient, fake_launcher: FakeLauncher):
        # Arrange
        fake_launcher.fail = True

        # Act
        response = client.post(URL, json=START)

        # Assert
        assert response.status_code == 500
        assert response.json()["errcode"] == "E_SPAWN_FAILED"
        assert response.json()["errmesg"] == "Failed to start FFmpeg process"


# ==================== STOP / STATUS / HEALTH ====================


class TestStop:
    def test_stop_running(self, client: TestClient, fake_launcher: FakeLauncher, registry: SessionRegistry):
        client.post(URL, json=START)

        response = client.post(URL, json={"action": "stop", "sessionId": "s1"})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert fake_launcher.processes[0].terminated is True
        assert len(registry) == 0

    def test_stop_unknown_session_succeeds(self, client: TestClient):
        response = client.post(URL, json={"action": "stop", "sessionId": "nope"})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_stop_by_other_user_keeps_stream(
        self, client: TestClient, caller: Caller, fake_launcher: FakeLauncher
    ):
        # Arrange
        client.post(URL, json=START)
        caller.user_id = "mallory"

        # Act
        response = client.post(URL, json={"action": "stop", "sessionId": "s1"})

        # Assert
        assert response.status_code == 200
        assert fake_launcher.processes[0].is_alive()


class TestStatus:
    def test_status_running_and_owned(self, client: TestClient):
        # Arrange
        client.post(URL, json=START)

        # Act
        response = client.post(URL, json={"action": "status", "sessionId": "s1"})

        # Assert
        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["running"] is True
        assert data["ownedByYou"] is True
        assert data["activeStreams"] == ["s1"]
        assert data["startedAt"] is not None

    def test_status_absent(self, client: TestClient):
        response = client.post(URL, json={"action": "status", "sessionId": "s1"})

        data = response.json()
        assert data["running"] is False
        assert data["startedAt"] is None
        assert data["ownedByYou"] is None
        assert data["activeStreams"] == []

    def test_status_reports_new_owner_after_replacement(self, client: TestClient, caller: Caller):
        # Arrange
        client.post(URL, json=START)
        caller.user_id = "bob"
        client.post(URL, json=START)

        # Act
        as_bob = client.post(URL, json={"action": "status", "sessionId": "s1"}).json()
        caller.user_id = "alice"
        as_alice = client.post(URL, json={"action": "status", "sessionId": "s1"}).json()

        # Assert
        assert as_bob["ownedByYou"] is True
        assert as_alice["ownedByYou"] is False
        assert as_alice["activeStreams"] == ["s1"]


class TestHealth:
    def test_health_no_stream(self, client: TestClient):
        response = client.post(URL, json={"action": "health", "sessionId": "s1"})

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["healthy"] is False
        assert data["reason"] == "No stream found"

    def test_health_active(self, client: TestClient):
        client.post(URL, json=START)

        data = client.post(URL, json={"action": "health", "sessionId": "s1"}).json()

        assert data["success"] is True
        assert data["healthy"] is True
        assert data["reason"] == "Stream active"


# ==================== CHUNKS ====================


class TestPushChunk:
    def test_chunks_forwarded_in_order(self, client: TestClient, fake_launcher: FakeLauncher):
        # Arrange
        client.post(URL, json=START)
        chunks = [b"\x1a\x45\xdf\xa3", b"cluster-1", b"cluster-2"]

        # Act
        responses = [push(client, c) for c in chunks]

        # Assert
        assert [r.status_code for r in responses] == [200, 200, 200]
        assert all(r.json()["accepted"] is True for r in responses)
        assert fake_launcher.processes[0].writes == chunks

    def test_push_before_start_is_not_found(self, client: TestClient):
        response = push(client, b"audio")

        assert response.status_code == 404
        assert response.json()["errcode"] == "E_STREAM_NOT_FOUND"

    def test_push_missing_session_header(self, client: TestClient):
        response = push(client, b"audio", session_id=None)

        assert response.status_code == 400

    def test_push_to_foreign_stream_is_forbidden(
        self, client: TestClient, caller: Caller, fake_launcher: FakeLauncher
    ):
        # Arrange
        client.post(URL, json=START)
        caller.user_id = "mallory"

        # Act
        response = push(client, b"audio")

        # Assert
        assert response.status_code == 403
        assert response.json()["errcode"] == "E_STREAM_FORBIDDEN"
        assert fake_launcher.processes[0].writes == []

    def test_push_empty_body(self, client: TestClient):
        client.post(URL, json=START)

        response = push(client, b"")

        assert response.status_code == 400
        assert response.json()["errmesg"] == "Empty audio data"

    def test_push_to_dead_encoder_is_gone(self, client: TestClient, fake_launcher: FakeLauncher):
        # Arrange
        client.post(URL, json=START)
        fake_launcher.processes[0].returncode = 1

        # Act
        first = push(client, b"audio")
        second = push(client, b"audio")

        # Assert
        assert first.status_code == 410
        assert first.json()["streamEnded"] is True
        assert first.json()["errcode"] == "E_STREAM_ENDED"
        assert second.status_code == 404

    def test_push_after_stop_is_not_found(self, client: TestClient):
        client.post(URL, json=START)
        client.post(URL, json={"action": "stop", "sessionId": "s1"})

        assert push(client, b"audio").status_code == 404


class TestAuthentication:
    def test_missing_token_is_unauthorized(self, test_app: FastAPI):
        # Arrange
        del test_app.dependency_overrides[get_current_user]

        # Act
        with TestClient(test_app) as client:
            response = client.post(URL, json=START)
            chunk = push(client, b"audio")

        # Assert
        assert response.status_code == 401
        assert response.json()["errcode"] == "E_BAD_TOKEN"
        assert chunk.status_code == 401


class TestScenario:
    def test_start_push_status_stop(self, client: TestClient, fake_launcher: FakeLauncher):
        # Start
        assert client.post(URL, json=START).status_code == 200

        # Three chunks
        for i in range(3):
            response = push(client, bytes([i]) * 1000)
            assert response.status_code == 200
            assert response.json()["success"] is True

        # Running and owned
        status = client.post(URL, json={"action": "status", "sessionId": "s1"}).json()
        assert status["running"] is True
        assert status["ownedByYou"] is True

        # Stop
        assert client.post(URL, json={"action": "stop", "sessionId": "s1"}).status_code == 200

        # Gone
        status = client.post(URL, json={"action": "status", "sessionId": "s1"}).json()
        assert status["running"] is False
        assert [len(w) for w in fake_launcher.processes[0].writes] == [1000, 1000, 1000]
