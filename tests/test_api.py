import pytest

from intake.core.exceptions import PersistentStoreError

from conftest import admin_headers, make_payload, make_token

SUBMISSIONS = "/api/v1/submissions"


def test_submit_returns_enveloped_result(api_client, container) -> None:
    response = api_client.post(
        SUBMISSIONS,
        json=make_payload(),
        headers={"X-Forwarded-For": "41.200.1.2, 10.0.0.1"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["code"] == "ok"
    data = body["data"]
    assert data["success"] is True
    assert data["duplicate"] is False
    assert data["persistedTo"] == {"local": True, "remote": True}
    assert response.headers["x-request-id"]
    assert response.headers["x-content-type-options"] == "nosniff"


def test_submit_records_forwarded_client_ip(api_client) -> None:
    api_client.post(
        SUBMISSIONS,
        json=make_payload(),
        headers={"X-Forwarded-For": "41.200.1.2, 10.0.0.1", "User-Agent": "intake-form/1.0"},
    )

    items = api_client.get(SUBMISSIONS, headers=admin_headers()).json()["data"]["items"]
    assert items[0]["ip"] == "41.200.1.2"
    assert items[0]["userAgent"] == "intake-form/1.0"


def test_invalid_phone_is_rejected_with_validation_error(api_client) -> None:
    response = api_client.post(SUBMISSIONS, json=make_payload(phone="12345"))

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["message"].startswith("phone")
    assert "phone" in body["details"]["fields"]
    assert body["data"] is None


def test_resubmit_is_flagged_duplicate(api_client) -> None:
    first = api_client.post(SUBMISSIONS, json=make_payload()).json()["data"]
    second = api_client.post(SUBMISSIONS, json=make_payload(phone="055 123 45 67")).json()["data"]

    assert second["duplicate"] is True
    assert second["submissionId"] == first["submissionId"]
    assert second["message"] == "Submission already received"


def test_remote_outage_queues_submission_until_manual_sync(api_client, remote) -> None:
    remote.available = False
    data = api_client.post(SUBMISSIONS, json=make_payload()).json()["data"]
    assert data["persistedTo"] == {"local": True, "remote": False}

    status = api_client.get("/api/v1/sync", headers=admin_headers()).json()["data"]
    assert status["stats"]["pending"] == 1
    assert status["stats"]["queueLength"] == 1
    assert [item["submissionId"] for item in status["queue"]] == [data["submissionId"]]

    remote.available = True
    result = api_client.post("/api/v1/sync", json={"force": True}, headers=admin_headers()).json()["data"]
    assert result["result"]["succeeded"] == 1
    assert result["stats"]["synced"] == 1
    assert result["stats"]["queueLength"] == 0


def test_both_stores_down_returns_storage_unavailable(api_client, container, remote, monkeypatch) -> None:
    remote.available = False

    async def broken_upsert(submission):
        raise PersistentStoreError("read-only filesystem")

    monkeypatch.setattr(container.local_store, "upsert", broken_upsert)

    response = api_client.post(SUBMISSIONS, json=make_payload())

    assert response.status_code == 503
    assert response.json()["code"] == "storage_unavailable"


def test_admin_routes_require_token(api_client) -> None:
    missing = api_client.get(SUBMISSIONS)
    assert missing.status_code == 401
    assert missing.json()["code"] == "unauthorized"

    not_admin = api_client.get(SUBMISSIONS, headers={"Authorization": f"Bearer {make_token(role='agent')}"})
    assert not_admin.status_code == 403

    garbage = api_client.get(SUBMISSIONS, headers={"Authorization": "Bearer not-a-jwt"})
    assert garbage.status_code == 403


def test_admin_cookie_is_accepted(api_client) -> None:
    api_client.post(SUBMISSIONS, json=make_payload())
    api_client.cookies.set("admin-token", make_token())

    response = api_client.get(f"{SUBMISSIONS}/stats")

    api_client.cookies.clear()
    assert response.status_code == 200
    assert response.json()["data"]["total"] == 1


def test_list_merges_local_and_remote(api_client, remote) -> None:
    api_client.post(SUBMISSIONS, json=make_payload())
    remote.available = False
    api_client.post(SUBMISSIONS, json=make_payload(phone="0771234567"))
    remote.available = True

    data = api_client.get(SUBMISSIONS, headers=admin_headers()).json()["data"]

    assert data["source"] == "merged"
    assert data["total"] == 2
    assert data["localCount"] == 2
    assert data["remoteCount"] == 1

    pending = api_client.get(SUBMISSIONS, params={"status": "pending"}, headers=admin_headers()).json()["data"]
    assert pending["total"] == 1
    assert pending["items"][0]["data"]["phone"] == "0771234567"


def test_list_falls_back_to_local_when_remote_down(api_client, remote) -> None:
    api_client.post(SUBMISSIONS, json=make_payload())
    remote.available = False

    data = api_client.get(SUBMISSIONS, headers=admin_headers()).json()["data"]

    assert data["source"] == "local"
    assert data["total"] == 1


def test_csv_export_is_a_download(api_client) -> None:
    api_client.post(SUBMISSIONS, json=make_payload())

    response = api_client.get(f"{SUBMISSIONS}/export", params={"format": "csv"}, headers=admin_headers())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert "attachment" in response.headers["content-disposition"]
    assert response.text.splitlines()[0].startswith("id,timestamp,status")


def test_json_export_is_not_enveloped(api_client) -> None:
    api_client.post(SUBMISSIONS, json=make_payload())

    response = api_client.get(f"{SUBMISSIONS}/export", params={"format": "json"}, headers=admin_headers())

    body = response.json()
    assert "code" not in body
    assert body["totalCount"] == 1
    assert body["submissions"][0]["data"]["fullName"] == "Amina Benali"


def test_delete_then_delete_again_is_not_found(api_client, remote) -> None:
    submission_id = api_client.post(SUBMISSIONS, json=make_payload()).json()["data"]["submissionId"]

    deleted = api_client.delete(f"{SUBMISSIONS}/{submission_id}", headers=admin_headers())
    assert deleted.status_code == 200
    assert deleted.json()["data"] == {
        "submissionId": submission_id,
        "deleted": True,
        "local": True,
        "remote": True,
    }
    assert submission_id not in remote.records

    again = api_client.delete(f"{SUBMISSIONS}/{submission_id}", headers=admin_headers())
    assert again.status_code == 404
    assert again.json()["code"] == "not_found"


def test_internal_broadcast_accepts_internal_token(api_client) -> None:
    submission_id = api_client.post(SUBMISSIONS, json=make_payload()).json()["data"]["submissionId"]

    response = api_client.post(
        "/api/v1/realtime/submissions",
        json={"submissionId": submission_id},
        headers={"X-Internal-Token": "internal-test-token"},
    )

    assert response.status_code == 200
    assert response.json()["data"] == {"delivered": 0, "activeConnections": 0}


def test_internal_broadcast_validation(api_client) -> None:
    headers = {"X-Internal-Token": "internal-test-token"}

    unknown = api_client.post("/api/v1/realtime/submissions", json={"submissionId": "nope"}, headers=headers)
    empty = api_client.post("/api/v1/realtime/submissions", json={}, headers=headers)
    unauthorized = api_client.post(
        "/api/v1/realtime/submissions",
        json={"submission": {"id": "x"}},
        headers={"X-Internal-Token": "wrong"},
    )

    assert unknown.status_code == 404
    assert empty.status_code == 400
    assert unauthorized.status_code == 401


def test_realtime_stream_requires_admin(api_client) -> None:
    response = api_client.get("/api/v1/realtime/submissions")
    assert response.status_code == 401
