from __future__ import annotations

import sqlite3

import pytest
import requests

from forecast_accuracy.api.jobs import API_KEY_ENV_VAR, WorkerJobClient, _should_retry, build_start_command
from forecast_accuracy.config import AppConfig
from forecast_accuracy.db import store
from forecast_accuracy.service import AccuracyService

SERVICES = [
    {"service": {"id": "srv-web", "type": "web_service", "name": "background-worker-web", "branch": "main"}},
    {"service": {"id": "srv-old", "type": "background_worker", "name": "background-worker", "branch": "staging"}},
    {"service": {"id": "srv-1", "type": "background_worker", "name": "background-worker-prod", "branch": "main"}},
]


class FakeResponse:
    def __init__(self, payload, status_code: int = 200) -> None:
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses: dict[tuple[str, str], FakeResponse]) -> None:
        self.responses = responses
        self.headers: dict[str, str] = {}
        self.calls: list[tuple[str, str, dict]] = []

    def request(self, method: str, url: str, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses[(method, url)]


def _setup_conn() -> sqlite3.Connection:
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    store.init_db(conn)
    return conn


def _client(session: FakeSession) -> WorkerJobClient:
    client = WorkerJobClient(api_key="test-key", base_url="https://worker.test/v1/")
    client.session = session
    return client


def test_build_start_command() -> None:
    assert build_start_command("forecast-accuracy", "reindex") == "forecast-accuracy reindex"
    assert (
        build_start_command("forecast-accuracy", "reindex", "0xM1", "c1")
        == "forecast-accuracy reindex --address 0xM1 --market-id c1"
    )
    assert build_start_command("forecast-accuracy", "reindex", market_id="c1") == "forecast-accuracy reindex --market-id c1"


def test_client_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv(API_KEY_ENV_VAR, raising=False)
    with pytest.raises(ValueError):
        WorkerJobClient()

    monkeypatch.setenv(API_KEY_ENV_VAR, "from-env")
    client = WorkerJobClient()
    assert client.session.headers["Authorization"] == "Bearer from-env"


def test_find_worker_matches_type_prefix_and_branch() -> None:
    worker = WorkerJobClient.find_worker(SERVICES, "background-worker", "main")
    assert worker["id"] == "srv-1"
    assert WorkerJobClient.find_worker(SERVICES, "background-worker", "dev") is None
    assert WorkerJobClient.find_worker([SERVICES[2]["service"]], "background-worker", "main")["id"] == "srv-1"


def test_list_services_and_create_job() -> None:
    session = FakeSession(
        {
            ("GET", "https://worker.test/v1/services"): FakeResponse(SERVICES),
            ("POST", "https://worker.test/v1/services/srv-1/jobs"): FakeResponse({"id": "job-1", "status": "pending"}),
        }
    )
    client = _client(session)

    assert len(client.list_services()) == 3
    job = client.create_job("srv-1", "forecast-accuracy reindex")

    assert job["id"] == "job-1"
    method, _, kwargs = session.calls[-1]
    assert method == "POST"
    assert kwargs["json"] == {"startCommand": "forecast-accuracy reindex"}
    assert session.calls[0][2]["params"] == {"limit": 100}


def test_client_error_is_not_retried() -> None:
    session = FakeSession({("GET", "https://worker.test/v1/services"): FakeResponse({}, status_code=401)})
    client = _client(session)

    with pytest.raises(requests.HTTPError):
        client.list_services()
    assert len(session.calls) == 1


@pytest.mark.parametrize(
    "status_code,expected",
    [(500, True), (503, True), (429, True), (400, False), (404, False)],
)
def test_should_retry_by_status(status_code, expected) -> None:
    exc = requests.HTTPError("boom", response=FakeResponse({}, status_code=status_code))
    assert _should_retry(exc) is expected


def test_should_retry_transport_errors() -> None:
    assert _should_retry(requests.Timeout()) is True
    assert _should_retry(requests.ConnectionError()) is True
    assert _should_retry(ValueError("bad json")) is False


def test_trigger_reindex_remote() -> None:
    session = FakeSession(
        {
            ("GET", "https://worker.test/v1/services"): FakeResponse(SERVICES),
            ("POST", "https://worker.test/v1/services/srv-1/jobs"): FakeResponse({"id": "job-7"}),
        }
    )
    config = AppConfig(jobs={"remote": True})
    service = AccuracyService(_setup_conn(), config, job_client=_client(session))

    result = service.trigger_reindex(address="0xM1", market_id="c1")

    assert result == {"mode": "remote", "job": {"id": "job-7"}}
    assert session.calls[-1][2]["json"] == {"startCommand": "forecast-accuracy reindex --address 0xM1 --market-id c1"}


def test_trigger_reindex_remote_without_worker() -> None:
    session = FakeSession({("GET", "https://worker.test/v1/services"): FakeResponse([])})
    service = AccuracyService(_setup_conn(), AppConfig(jobs={"remote": True}), job_client=_client(session))

    with pytest.raises(RuntimeError, match="Background worker not found"):
        service.trigger_reindex(market_id="c1")


def test_trigger_reindex_local_and_cache_invalidation() -> None:
    conn = _setup_conn()
    store.upsert_conditions(
        conn,
        [{"id": "c1", "end_time": 100, "settled": True, "resolved_to_yes": True, "resolver": "0xM1"}],
    )
    store.upsert_attestations(
        conn,
        [{"id": 1, "attester": "0xAlice", "condition_id": "c1", "prediction": "0.8", "time": 0}],
    )
    service = AccuracyService(conn, AppConfig())
    assert service.top_forecasters() == []

    result = service.trigger_reindex(market_id="c1")

    assert result["mode"] == "local"
    assert result["result"]["markets_processed"] == 1
    top = service.top_forecasters()
    assert [entry["attester"] for entry in top] == ["0xalice"]
    assert service.forecaster_score("0xALICE")["sum_time_weighted_error"] == pytest.approx(0.04)
    assert service.accuracy_rank_by_address("0xalice")["rank"] == 1
    assert service.status()["status"] == "idle"


def test_backfill_invalidates_cached_leaderboard() -> None:
    conn = _setup_conn()
    service = AccuracyService(conn, AppConfig())
    assert service.forecaster_score("0xbob") is None

    store.upsert_conditions(
        conn,
        [{"id": "c9", "end_time": 10, "settled": True, "resolved_to_yes": False, "resolver": "0xM9"}],
    )
    store.upsert_attestations(
        conn,
        [{"id": 9, "attester": "0xBob", "condition_id": "c9", "prediction": "0.5", "time": 0}],
    )
    service.backfill_accuracy()

    assert service.forecaster_score("0xbob")["num_time_weighted"] == 1
    assert service.status("backfill_accuracy")["processed"] == 2
