import asyncio

import pytest


async def wait_for_status(client, job_id, status, attempts=40):
    data = None
    for _ in range(attempts):
        r = await client.get(f"/jobs/{job_id}")
        data = r.json()
        if data["status"] == status:
            return data
        await asyncio.sleep(0.05)
    raise AssertionError(f"job {job_id} stuck in {data and data['status']!r}")


@pytest.mark.asyncio
async def test_run_job_and_metrics(client, sample_service):
    # Submit a job
    res = await client.get("/run-job", params={"name": "Ada"})
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Job is enqueued."
    assert body["name"] == "Ada"
    job_id = body["job_id"]

    # Verify job runs to completion
    data = await wait_for_status(client, job_id, "succeeded")
    assert data["error"] is None
    assert sample_service.executed == ["Ada"]

    # Check metrics contain counters
    resm = await client.get("/metrics")
    assert resm.status_code == 200
    text = resm.text
    assert "jobs_submitted_total" in text
    assert "jobs_enqueued_total" in text
    assert "jobs_executed_total" in text


@pytest.mark.asyncio
async def test_run_job_default_name(client, sample_service):
    res = await client.get("/run-job")
    job_id = res.json()["job_id"]
    await wait_for_status(client, job_id, "succeeded")
    assert sample_service.executed == ["Hello World"]


@pytest.mark.asyncio
async def test_schedule_job_defaults_to_three_hours(client):
    res = await client.get("/schedule-job", params={"name": "later"})
    assert res.status_code == 200
    body = res.json()
    assert body["message"] == "Job is scheduled."
    assert body["status"] == "scheduled"

    r = await client.get(f"/jobs/{body['job_id']}")
    assert r.json()["status"] == "scheduled"


@pytest.mark.asyncio
@pytest.mark.parametrize("when", ["3 hours", "-PT1H", "P99999999999D"])
async def test_schedule_job_bad_duration_is_client_error(client, when):
    res = await client.get("/schedule-job", params={"name": "x", "when": when})
    assert res.status_code == 400


@pytest.mark.asyncio
async def test_idempotency_key(client):
    a = await client.get("/schedule-job", params={"name": "x", "key": "nightly"})
    b = await client.get("/schedule-job", params={"name": "x", "key": "nightly"})
    assert a.json()["job_id"] == b.json()["job_id"]


@pytest.mark.asyncio
async def test_cancel_and_list(client):
    # Submit a job far in the future
    res = await client.get("/schedule-job", params={"name": "task", "when": "PT1H"})
    job_id = res.json()["job_id"]

    # Cancel it, twice
    rc = await client.post(f"/jobs/{job_id}/cancel")
    assert rc.status_code == 200
    assert rc.json()["status"] == "cancelled"
    rc2 = await client.post(f"/jobs/{job_id}/cancel")
    assert rc2.json() == rc.json()

    rl = await client.get("/jobs")
    assert rl.status_code == 200
    assert [j["job_id"] for j in rl.json()["jobs"]] == [job_id]


@pytest.mark.asyncio
async def test_unknown_job_is_404(client):
    assert (await client.get("/jobs/does-not-exist")).status_code == 404
    assert (await client.post("/jobs/does-not-exist/cancel")).status_code == 404


@pytest.mark.asyncio
async def test_health_endpoints(client):
    assert (await client.get("/healthz")).json() == {"status": "ok"}
    ready = (await client.get("/readyz")).json()
    assert ready["ready"] is True
    assert ready["workers"] == 2
