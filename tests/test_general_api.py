def test_root(client):
    data = client.get("/").json()
    assert data["status"] == "running"


def test_public_config(client):
    data = client.get("/config").json()
    assert data["idle_threshold_minutes"] == 10
    assert data["rate_cache_ttl_seconds"] == 300


def test_health_counts_running_timers(client, user_headers, frozen_clock):
    assert client.get("/health").json()["running_timers"] == 0

    entry = client.post("/time-entries", json={"date": "2025-03-03"}, headers=user_headers).json()
    client.post(f"/time-entries/{entry['entry_id']}/timer", json={"action": "start"}, headers=user_headers)

    data = client.get("/health").json()
    assert data["status"] == "healthy"
    assert data["running_timers"] == 1
