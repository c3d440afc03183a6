"""Tests for lookup.py: submission and animation lookups."""

import datetime

import pytest

import lookup


def _ago(minutes):
  return datetime.datetime.utcnow() - datetime.timedelta(minutes=minutes)


class TestQueueNumberForms:
  @pytest.mark.parametrize("value,expected", [
      ("10001", ["10001"]),
      (10001, ["10001"]),
      ("00042", ["00042", "42"]),
      ("42", ["42", "00042"]),
      ("abc", ["abc"]),
  ])
  def test_forms(self, value, expected):
    assert lookup.queue_number_forms(value) == expected


class TestGetAnimation:
  def test_missing_params_is_400(self, client):
    resp = client.get("/api/get-animation")
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing queueNumber or taskId parameter"}

  def test_none_found_is_404(self, client):
    resp = client.get("/api/get-animation", params={"queueNumber": "10001"})
    assert resp.status_code == 404
    assert "error" in resp.json()

  def test_newest_first(self, client, create_task):
    create_task("old", created_at=_ago(10))
    create_task("new", created_at=_ago(1))
    create_task("other", family_art_id="10002")

    data = client.get("/api/get-animation", params={"queueNumber": "10001"}).json()
    assert data["success"] is True
    assert data["count"] == 2
    assert [a["taskId"] for a in data["animations"]] == ["new", "old"]
    assert data["animations"][0]["cloudinaryVideoUrl"] == "https://cdn.example.com/new.mp4"

  def test_matches_unpadded_legacy_rows(self, client, create_task):
    create_task("legacy", family_art_id="42")
    create_task("padded", family_art_id="00042")

    data = client.get("/api/get-animation", params={"queueNumber": "42"}).json()
    assert {a["taskId"] for a in data["animations"]} == {"legacy", "padded"}

  def test_by_task_id(self, client, create_task):
    create_task("seedance-v1-lite_1", family_art_id="10001")
    create_task("seedance-v1-lite_2", family_art_id="10001")

    data = client.get("/api/get-animation", params={"taskId": "seedance-v1-lite_2"}).json()
    assert data["count"] == 1
    assert data["animations"][0]["taskId"] == "seedance-v1-lite_2"

  def test_includes_failed_tasks(self, client, create_task):
    create_task("broken", status="failed", error_message="content policy")
    data = client.get("/api/get-animation", params={"queueNumber": "10001"}).json()
    assert data["animations"][0]["status"] == "failed"
    assert data["animations"][0]["errorMessage"] == "content policy"


class TestGetSubmission:
  def test_missing_param_is_400(self, client):
    assert client.get("/api/get-submission").status_code == 400

  def test_unknown_is_404(self, client):
    resp = client.get("/api/get-submission", params={"queueNumber": "99999"})
    assert resp.status_code == 404
    assert resp.json()["error"] == "No submission found for this queue number"

  @pytest.mark.parametrize("path", ["/api/get-submission", "/api/get-animation"])
  @pytest.mark.parametrize("queue_number", ["²", "¹²"])
  def test_superscript_digits_are_not_found(self, client, create_submission, path, queue_number):
    create_submission("00002")
    resp = client.get(path, params={"queueNumber": queue_number})
    assert resp.status_code == 404
    assert "error" in resp.json()

  def test_submission_without_animations(self, client, create_submission):
    create_submission("10001")
    data = client.get("/api/get-submission", params={"queueNumber": "10001"}).json()
    assert data["success"] is True
    assert data["submission"]["queueNumber"] == "10001"
    assert data["submission"]["generatedOutlineUrl"] == "https://example.com/outline.png"
    assert data["animations"] == []

  def test_submission_with_animations(self, client, create_submission, create_task):
    create_submission("10001")
    create_task("a1", created_at=_ago(5))
    create_task("a2", created_at=_ago(1))

    data = client.get("/api/get-submission", params={"queueNumber": "10001"}).json()
    assert [a["taskId"] for a in data["animations"]] == ["a2", "a1"]

  def test_number_and_string_forms_agree(self, client, create_submission):
    create_submission("00042")
    by_padded = client.get("/api/get-submission", params={"queueNumber": "00042"}).json()
    by_bare = client.get("/api/get-submission", params={"queueNumber": "42"}).json()
    assert by_padded["submission"] == by_bare["submission"]


class TestRecentSubmissions:
  def test_requires_admin(self, client, create_user, auth_headers):
    user = create_user(email="parent@example.com")
    assert client.get("/api/get-recent-submissions").status_code == 401
    resp = client.get("/api/get-recent-submissions", headers=auth_headers(user))
    assert resp.status_code == 403

  def test_one_entry_per_queue_number(self, client, create_user, auth_headers, create_task):
    admin = create_user(email="staff@example.com", is_admin=True)
    create_task("t1", family_art_id="10001", created_at=_ago(9))
    create_task("t2", family_art_id="10001", created_at=_ago(1))
    create_task("t3", family_art_id="10002", created_at=_ago(5))
    create_task("t4", family_art_id="10003", status="failed", created_at=_ago(0))

    data = client.get("/api/get-recent-submissions", headers=auth_headers(admin)).json()
    assert data["count"] == 2
    assert [s["queueNumber"] for s in data["submissions"]] == ["10001", "10002"]
    assert data["submissions"][0]["animations"][0]["taskId"] == "t2"

  def test_capped_at_five(self, db_session, create_task):
    for i in range(8):
      create_task(f"t{i}", family_art_id=str(10001 + i), created_at=_ago(i))
    assert len(lookup.recent_submissions(db_session)) == 5


class TestSimulatedMode:
  @pytest.mark.parametrize("path", [
      "/api/get-animation?queueNumber=10001",
      "/api/get-submission?queueNumber=10001",
  ])
  def test_lookups_disabled(self, client, monkeypatch, path):
    monkeypatch.setenv("FORCE_APP_MODE", "simulated")
    resp = client.get(path)
    assert resp.status_code == 503
    assert resp.json() == {"success": False, "error": "API disabled - using simulated mode"}
