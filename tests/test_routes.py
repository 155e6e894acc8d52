from hours_tracker.errors import BitbucketAuthError
from tests.fakes import make_pr, make_commit


def seed(fake_client):
    fake_client.pull_requests["teamx/api"] = [make_pr("teamx/api", 10, "Fix ABC-99 login bug")]
    fake_client.pr_commits[("teamx/api", 10)] = [make_commit("aaa", "wip")]
    fake_client.repo_commits["teamx/api"] = [make_commit("aaa", "wip")]


def test_get_activity(client, fake_client):
    seed(fake_client)

    resp = client.get("/api/activity?days=7&repos=api,web")

    assert resp.status_code == 200
    data = resp.get_json()
    assert data["count"] == 1
    assert data["days"] == 7
    assert data["items"][0]["commit_hash"] == "aaa"
    assert data["items"][0]["ticket_source"] == "PR title"


def test_get_activity_rejects_bad_days(client):
    assert client.get("/api/activity?days=0").status_code == 400


def test_start_refresh_and_poll(client, fake_client):
    seed(fake_client)

    resp = client.post("/api/activity/refresh", json={"days": 7, "repos": ["api"]})

    assert resp.status_code == 202
    job = resp.get_json()["job"]
    assert job["parameters"] == {"max_days": 7, "selected_repos_count": 1, "author_filter": "Jane Doe"}

    status = client.get(f"/api/refresh-jobs/{job['job_id']}").get_json()["job"]
    assert status["status"] == "completed"
    assert status["is_completed"] is True
    assert status["item_count"] == 1

    # the completed refresh now serves the cached read
    cached = client.post("/api/activity/refresh", json={"days": 7, "repos": ["api"]}).get_json()
    assert cached["cached"] is True
    assert len(cached["items"]) == 1


def test_unknown_job_is_404(client):
    assert client.get("/api/refresh-jobs/nope").status_code == 404
    assert client.delete("/api/refresh-jobs/nope").status_code == 404
    assert client.post("/api/refresh-jobs/nope/acknowledge").status_code == 404


def test_cancel_finished_job_reports_false(client):
    job = client.post("/api/activity/refresh", json={"days": 7}).get_json()["job"]

    resp = client.delete(f"/api/refresh-jobs/{job['job_id']}")

    assert resp.status_code == 200
    assert resp.get_json()["cancelled"] is False


def test_acknowledge_job(client):
    job = client.post("/api/activity/refresh", json={}).get_json()["job"]

    assert client.post(f"/api/refresh-jobs/{job['job_id']}/acknowledge").status_code == 200
    assert client.get(f"/api/refresh-jobs/{job['job_id']}").status_code == 404


def test_repositories_and_toggle(client):
    repos = client.get("/api/repositories").get_json()["repositories"]
    assert [r["full_name"] for r in repos] == ["teamx/api", "teamx/web"]

    resp = client.put(f"/api/repositories/{repos[0]['id']}/enabled", json={"is_enabled": False})
    assert resp.status_code == 200
    assert resp.get_json()["is_enabled"] is False

    enabled = client.get("/api/repositories/enabled").get_json()["repositories"]
    assert [r["full_name"] for r in enabled] == ["teamx/web"]


def test_toggle_validation_and_unknown(client):
    assert client.put("/api/repositories/1/enabled", json={"is_enabled": "yes"}).status_code == 400
    assert client.put("/api/repositories/999/enabled", json={"is_enabled": True}).status_code == 404


def test_save_selection(client):
    resp = client.post("/api/repositories/selection", json={"repos": ["web"]})
    assert resp.status_code == 200
    assert client.get("/api/repositories/selection").get_json()["repos"] == ["web"]
    assert client.post("/api/repositories/selection", json={}).status_code == 400


def test_clear_cache(client, fake_client):
    seed(fake_client)
    client.get("/api/activity?days=7&repos=api")

    resp = client.post("/api/clear-cache", json={"pattern": "teamx/api"})

    assert resp.get_json()["removed"] == 1
    assert client.get("/api/cache-stats").get_json()["entries"] == 0


def test_auth_error_maps_to_401(client, fake_client):
    fake_client.errors["teamx"] = BitbucketAuthError("Invalid or expired credentials (401)", status_code=401)

    resp = client.get("/api/repositories")

    assert resp.status_code == 401
    assert resp.get_json()["code"] == "AUTH_ERROR"


def test_user_endpoint(client, fake_client):
    resp = client.get("/api/user")
    assert resp.status_code == 200
    assert resp.get_json()["user"]["display_name"] == "Jane Doe"

    fake_client.user_error = BitbucketAuthError(status_code=401)
    resp = client.get("/api/user")
    assert resp.status_code == 401
    assert resp.get_json()["code"] == "AUTH_ERROR"
