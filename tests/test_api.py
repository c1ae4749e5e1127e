"""Tests for the HTTP surface."""
import pytest
from fastapi.testclient import TestClient

from geovault.server.api import create_app
from geovault.shared.codec import encode_b64, encode_cleartext


ORACLE_TOKEN = "test-oracle-token"


@pytest.fixture
def engine(make_engine):
    return make_engine(CELL_SIZE=1.0, ORACLE_TOKEN=ORACLE_TOKEN)


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine))


def submit(client, crypto, lat, lon, ts, owner=None):
    enc_lat, enc_lon, enc_ts = crypto.encrypt_point(lat, lon, ts)
    response = client.post("/points", json={
        "enc_lat": enc_lat.hex(),
        "enc_lon": enc_lon.hex(),
        "enc_timestamp": enc_ts.hex(),
        "owner": owner,
    })
    assert response.status_code == 200
    return response.json()["id"]


class TestPointsAPI:
    """Test point submission and retrieval."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["leaks_cell_membership"] is True

    def test_submit_and_get(self, client, crypto):
        point_id = submit(client, crypto, 1.0, 2.0, 3.0, owner="alice")
        assert point_id == 1

        response = client.get(f"/points/{point_id}")
        assert response.status_code == 200
        assert response.json()["owner"] == "alice"

    def test_unknown_point(self, client):
        response = client.get("/points/42")
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_malformed_handle(self, client):
        response = client.post("/points", json={"enc_lat": "zz", "enc_lon": "00", "enc_timestamp": "00"})
        assert response.status_code == 400

    def test_foreign_handle(self, client):
        response = client.post("/points", json={"enc_lat": "00" * 32, "enc_lon": "00" * 32, "enc_timestamp": "00" * 32})
        assert response.status_code == 400
        assert response.json()["error"] == "InvalidCiphertextError"


class TestQueryAPI:
    """Test queries and the reveal handshake over HTTP."""

    def test_range_query_flow(self, client, crypto):
        a = submit(client, crypto, 0, 0, 1000)
        b = submit(client, crypto, 10, 10, 2000)
        submit(client, crypto, 100, 100, 3000)

        query_hash = client.post("/queries/range", json={
            "center_lat": 0, "center_lon": 0, "radius": 15, "start_time": 1000, "end_time": 2000,
        }).json()["query_hash"]

        result = client.get(f"/queries/{query_hash}").json()
        assert result["complete"] is True
        assert result["kind"] == "range"
        assert len(result["point_ids"]) == len(result["encrypted_distances"])
        assert result["reveal_state"] == "no_request"

        assert client.post(f"/queries/{query_hash}/reveal").status_code == 200
        assert client.get(f"/queries/{query_hash}/decrypted").json()["revealed"] is False

        assert client.post("/oracle/deliver").json() == {"delivered": 1}
        decrypted = client.get(f"/queries/{query_hash}/decrypted").json()
        assert decrypted["revealed"] is True
        assert decrypted["point_ids"] == [a, b]

        again = client.post(f"/queries/{query_hash}/reveal")
        assert again.status_code == 409
        assert again.json()["error"] == "AlreadyRevealedError"

    def test_nearest_query(self, client, crypto):
        a = submit(client, crypto, 0, 0, 0)
        submit(client, crypto, 10, 10, 0)

        body = client.post("/queries/nearest", json={"target_lat": 0, "target_lon": 0}).json()
        assert body["encrypted_id"]

        client.post(f"/queries/{body['query_hash']}/reveal")
        client.post("/oracle/deliver")
        decrypted = client.get(f"/queries/{body['query_hash']}/decrypted").json()
        assert decrypted["point_ids"] == [a]
        assert decrypted["distances"] == [0.0]

    def test_reveal_unknown_query(self, client):
        response = client.post(f"/queries/{'0' * 64}/reveal")
        assert response.status_code == 409
        assert response.json()["error"] == "QueryIncompleteError"

    def test_stats(self, client, crypto):
        submit(client, crypto, 0, 0, 0)
        body = client.get("/stats").json()
        assert body["num_points"] == 1
        assert body["last_eval_ms"] == 0.0


class TestOracleCallbackAPI:
    """Test the oracle-only callback endpoint."""

    def _pending_response(self, client, crypto, engine):
        submit(client, crypto, 0, 0, 0)
        query_hash = client.post("/queries/range", json={
            "center_lat": 0, "center_lon": 0, "radius": 1, "start_time": 0, "end_time": 1,
        }).json()["query_hash"]
        client.post(f"/queries/{query_hash}/reveal")
        (response,) = engine.oracle.respond()
        return query_hash, response

    def _payload(self, response, cleartext=None):
        return {
            "request_id": response.request_id,
            "cleartext_b64": encode_b64(cleartext if cleartext is not None else response.cleartext),
            "proof_b64": encode_b64(response.proof),
        }

    def test_callback(self, client, crypto, engine):
        query_hash, response = self._pending_response(client, crypto, engine)

        result = client.post("/oracle/callback", json=self._payload(response), headers={"X-Oracle-Token": ORACLE_TOKEN})
        assert result.status_code == 200
        assert result.json()["revealed"] is True

        replay = client.post("/oracle/callback", json=self._payload(response), headers={"X-Oracle-Token": ORACLE_TOKEN})
        assert replay.status_code == 400
        assert replay.json()["error"] == "InvalidRequestError"

    def test_callback_requires_token(self, client, crypto, engine):
        query_hash, response = self._pending_response(client, crypto, engine)

        assert client.post("/oracle/callback", json=self._payload(response)).status_code == 401
        assert client.post(
            "/oracle/callback", json=self._payload(response), headers={"X-Oracle-Token": "wrong"}
        ).status_code == 401
        assert client.get(f"/queries/{query_hash}/decrypted").json()["revealed"] is False

    def test_forged_callback(self, client, crypto, engine):
        query_hash, response = self._pending_response(client, crypto, engine)

        forged = self._payload(response, cleartext=encode_cleartext([5.0]))
        result = client.post("/oracle/callback", json=forged, headers={"X-Oracle-Token": ORACLE_TOKEN})
        assert result.status_code == 403
        assert client.get(f"/queries/{query_hash}/decrypted").json()["revealed"] is False

    def test_callback_disabled_without_token(self, make_engine):
        engine = make_engine()
        client = TestClient(create_app(engine))

        payload = {"request_id": "x", "cleartext_b64": "", "proof_b64": ""}
        assert client.post("/oracle/callback", json=payload, headers={"X-Oracle-Token": "x"}).status_code == 503

    def test_deliver_hidden_in_production(self, make_engine):
        engine = make_engine(ENVIRONMENT="production")
        client = TestClient(create_app(engine))

        assert client.post("/oracle/deliver").status_code == 404
