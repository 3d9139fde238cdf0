"""
Job API tests.

Upload admission, owner-scoped reads, retry and delete, exercised over
HTTP against the real app.
"""
from docai import tasks
from docai.config import settings
from docai.dependencies.services import get_dispatcher, get_rate_limiter
from docai.errors import StorageError
from docai.main import app
from docai.services.dispatcher import LocalDispatcher
from docai.services.job_service import JobService

from conftest import auth_headers, make_rate_limiter

TXT = ("notes.txt", b"Meeting notes: budget approved, launch moved to May.", "text/plain")


async def upload(client, owner="alice", file=TXT):
    return await client.post("/jobs", files={"file": file}, headers=auth_headers(owner))


async def test_upload_returns_queued_job_and_dispatches(client, dispatcher, session_factory):
    response = await upload(client)

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "queued"
    assert response.headers["X-RateLimit-Remaining"] == "99"

    await tasks.drain(timeout=5)
    assert dispatcher.dispatched == [body["jobId"]]

    status = await client.get(f"/jobs/{body['jobId']}", headers=auth_headers("alice"))
    assert status.status_code == 200
    assert status.json()["status"] == "queued"
    assert status.json()["fileName"] == "notes.txt"
    assert status.json()["result"] is None


async def test_upload_requires_authentication(client):
    response = await client.post("/jobs", files={"file": TXT})

    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"


async def test_invalid_token_is_rejected(client):
    response = await client.get("/jobs", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


async def test_oversized_upload_is_rejected_without_a_job(client, session_factory):
    big = ("big.txt", b"a" * (12 * 1024 * 1024), "text/plain")

    response = await upload(client, file=big)

    assert response.status_code == 400
    assert response.json()["error"] == "VALIDATION_ERROR"
    async with session_factory() as db:
        assert await JobService(db).get_jobs_for_owner("alice") == []


async def test_disallowed_type_is_rejected(client):
    response = await upload(client, file=("tool.exe", b"MZ\x90\x00", "application/x-msdownload"))

    assert response.status_code == 400


async def test_sixth_free_upload_requires_upgrade(client, session_factory, storage):
    for _ in range(settings.FREE_CREDIT_LIMIT):
        assert (await upload(client)).status_code == 200

    response = await upload(client, file=("small.txt", b"x" * 2048, "text/plain"))

    assert response.status_code == 403
    body = response.json()
    assert body["requiresUpgrade"] is True
    assert body["creditsRemaining"] == 0
    async with session_factory() as db:
        assert len(await JobService(db).get_jobs_for_owner("alice")) == settings.FREE_CREDIT_LIMIT
    assert len(list(storage._root.rglob("*_small.txt"))) == 0


async def test_rate_limited_upload(client):
    limiter = make_rate_limiter(upload=2)
    app.dependency_overrides[get_rate_limiter] = lambda: limiter

    assert (await upload(client)).status_code == 200
    assert (await upload(client)).status_code == 200
    response = await upload(client)

    assert response.status_code == 429
    assert response.json()["retryAfterMs"] > 0
    assert int(response.headers["Retry-After"]) >= 1


async def test_other_owners_get_404(client):
    job_id = (await upload(client, owner="alice")).json()["jobId"]

    for method, path in [("GET", f"/jobs/{job_id}"), ("POST", f"/jobs/{job_id}/retry"), ("DELETE", f"/jobs/{job_id}")]:
        response = await client.request(method, path, headers=auth_headers("mallory"))
        assert response.status_code == 404
        assert response.json() == {"error": "NOT_FOUND", "message": "Job not found"}

    missing = await client.get("/jobs/no-such-job", headers=auth_headers("mallory"))
    assert missing.json() == response.json()


async def test_list_returns_only_own_jobs(client):
    await upload(client, owner="alice")
    await upload(client, owner="bob")

    response = await client.get("/jobs", headers=auth_headers("bob"))

    assert response.status_code == 200
    assert len(response.json()) == 1


async def test_upload_is_processed_end_to_end(client, worker):
    app.dependency_overrides[get_dispatcher] = lambda: LocalDispatcher(worker)

    job_id = (await upload(client)).json()["jobId"]
    await tasks.drain(timeout=10)

    body = (await client.get(f"/jobs/{job_id}", headers=auth_headers("alice"))).json()
    assert body["status"] == "completed"
    assert body["result"]["summary"]
    assert body["error"] is None
    assert body["processedAt"] is not None


async def fail_job(session_factory, job_id):
    async with session_factory() as db:
        await JobService(db).fail_job(job_id, "Could not download file from storage")


async def test_retry_requeues_failed_job(client, dispatcher, session_factory):
    job_id = (await upload(client)).json()["jobId"]
    await fail_job(session_factory, job_id)

    response = await client.post(f"/jobs/{job_id}/retry", headers=auth_headers("alice"))

    assert response.status_code == 200
    assert response.json() == {"jobId": job_id, "status": "queued"}
    await tasks.drain(timeout=5)
    assert dispatcher.dispatched == [job_id, job_id]

    body = (await client.get(f"/jobs/{job_id}", headers=auth_headers("alice"))).json()
    assert body["status"] == "queued"
    assert body["error"] is None


async def test_retry_of_unfailed_job_conflicts(client):
    job_id = (await upload(client)).json()["jobId"]

    response = await client.post(f"/jobs/{job_id}/retry", headers=auth_headers("alice"))

    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"


async def test_retry_limit(client, session_factory):
    job_id = (await upload(client)).json()["jobId"]

    for _ in range(settings.MAX_MANUAL_RETRIES):
        await fail_job(session_factory, job_id)
        assert (await client.post(f"/jobs/{job_id}/retry", headers=auth_headers("alice"))).status_code == 200

    await fail_job(session_factory, job_id)
    response = await client.post(f"/jobs/{job_id}/retry", headers=auth_headers("alice"))

    assert response.status_code == 409
    assert response.json()["error"] == "RETRY_LIMIT_REACHED"


async def test_delete_removes_job_even_if_blob_delete_fails(client, storage):
    job_id = (await upload(client)).json()["jobId"]

    async def broken_delete(location):
        raise StorageError("bucket unavailable")

    storage.delete = broken_delete

    response = await client.delete(f"/jobs/{job_id}", headers=auth_headers("alice"))
    assert response.status_code == 200

    again = await client.get(f"/jobs/{job_id}", headers=auth_headers("alice"))
    assert again.status_code == 404


async def test_download_returns_the_stored_file(client):
    job_id = (await upload(client)).json()["jobId"]

    response = await client.get(f"/jobs/{job_id}/download", headers=auth_headers("alice"))

    assert response.status_code == 200
    assert response.content == TXT[1]
    assert response.headers["content-type"].startswith("text/plain")
    assert 'filename="notes.txt"' in response.headers["content-disposition"]


async def test_download_prefers_a_signed_url(client, storage):
    job_id = (await upload(client)).json()["jobId"]
    signed = []

    async def signed_url(location, expires_in):
        signed.append((location, expires_in))
        return f"https://blobs.example.com/{location}?token=abc"

    storage.signed_url = signed_url

    response = await client.get(f"/jobs/{job_id}/download", headers=auth_headers("alice"))

    assert response.status_code == 200
    body = response.json()
    assert body["fileName"] == "notes.txt"
    assert body["expiresIn"] == settings.DOWNLOAD_URL_TTL_SECONDS
    assert body["url"].startswith("https://blobs.example.com/alice/")
    assert signed[0][1] == settings.DOWNLOAD_URL_TTL_SECONDS


async def test_download_of_someone_elses_job_is_404(client):
    job_id = (await upload(client, owner="alice")).json()["jobId"]

    response = await client.get(f"/jobs/{job_id}/download", headers=auth_headers("mallory"))

    assert response.status_code == 404


async def test_export_requires_a_completed_job(client):
    job_id = (await upload(client)).json()["jobId"]

    response = await client.get(f"/jobs/{job_id}/export", headers=auth_headers("alice"))

    assert response.status_code == 409
    assert response.json()["error"] == "CONFLICT"


async def test_export_of_completed_job(client, worker):
    app.dependency_overrides[get_dispatcher] = lambda: LocalDispatcher(worker)
    job_id = (await upload(client)).json()["jobId"]
    await tasks.drain(timeout=10)

    response = await client.get(f"/jobs/{job_id}/export", headers=auth_headers("alice"))

    assert response.status_code == 200
    report = response.json()
    assert report["jobId"] == job_id
    assert report["fileName"] == "notes.txt"
    assert report["summary"] == "A short report about quarterly sales."
    assert report["category"] == "Business"
    assert report["provider"] == "gemini"
    assert report["fallback"] is False
    assert report["extractedText"] == TXT[1].decode()[:50]
    assert report["generatedAt"]

    foreign = await client.get(f"/jobs/{job_id}/export", headers=auth_headers("mallory"))
    assert foreign.status_code == 404
