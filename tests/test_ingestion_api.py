"""Tests for the /ingestion HTTP endpoints."""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import OTHER_HASH, SAMPLE_HASH
from docingest.database import get_db
from docingest.main import app
from docingest.routers.ingestion import get_job_queue, get_storage_service


@pytest.fixture
def client(db, storage, job_queue):
    """Test client with database, storage and queue overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    async def override_get_job_queue():
        return job_queue

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage_service] = lambda: storage
    app.dependency_overrides[get_job_queue] = override_get_job_queue

    yield TestClient(app)

    app.dependency_overrides.clear()


def _process(client, file_hash=SAMPLE_HASH):
    response = client.post(
        "/ingestion/process",
        json={
            "objectKey": f"pdfs/{file_hash}-1-report.pdf",
            "fileName": "report.pdf",
            "fileHash": file_hash,
            "userId": "user-1",
            "metadata": {"team": "finance"},
        },
    )
    assert response.status_code == 200
    return response.json()


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestUploadUrl:
    def test_returns_upload_target(self, client):
        response = client.post("/ingestion/upload-url", json={"fileName": "report.pdf", "fileHash": SAMPLE_HASH})
        assert response.status_code == 200
        data = response.json()
        assert data["uploadUrl"].startswith("https://storage.test/")
        assert data["objectKey"].startswith(f"pdfs/{SAMPLE_HASH}-")
        assert data["fileHash"] == SAMPLE_HASH
        assert data["expiresInSeconds"] == 3600

    def test_hash_is_normalised(self, client):
        response = client.post(
            "/ingestion/upload-url", json={"fileName": "report.pdf", "fileHash": SAMPLE_HASH.upper()}
        )
        assert response.status_code == 200
        assert response.json()["fileHash"] == SAMPLE_HASH

    def test_path_components_stripped(self, client):
        response = client.post(
            "/ingestion/upload-url", json={"fileName": "../../etc/report.pdf", "fileHash": SAMPLE_HASH}
        )
        assert response.status_code == 200
        assert response.json()["objectKey"].endswith("-report.pdf")

    @pytest.mark.parametrize(
        "body",
        [
            {"fileName": "report.docx", "fileHash": SAMPLE_HASH},
            {"fileName": "report.pdf", "fileHash": "not-a-hash"},
            {"fileName": "", "fileHash": SAMPLE_HASH},
            {"fileHash": SAMPLE_HASH},
        ],
    )
    def test_invalid_requests_rejected(self, client, body):
        response = client.post("/ingestion/upload-url", json=body)
        assert response.status_code == 422

    def test_processing_short_circuit(self, client):
        queued = _process(client)
        response = client.post("/ingestion/upload-url", json={"fileName": "report.pdf", "fileHash": SAMPLE_HASH})
        data = response.json()
        assert data["status"] == "processing"
        assert data["jobId"] == queued["jobId"]
        assert data["skipUpload"] is True


class TestProcessAndStatus:
    def test_process_then_status(self, client):
        queued = _process(client)
        assert queued["status"] == "queued"

        response = client.get(f"/ingestion/status/{queued['jobId']}")
        assert response.status_code == 200
        data = response.json()
        assert data["id"] == queued["jobId"]
        assert data["status"] == "queued"
        assert data["progress"] == 0
        assert data["metadata"]["contentHash"] == SAMPLE_HASH
        assert data["metadata"]["uploadedBy"] == "user-1"

    def test_process_twice_is_already_processing(self, client):
        first = _process(client)
        second = _process(client)
        assert second == {"status": "already_processing", "jobId": first["jobId"]}

    def test_unknown_status_is_404(self, client):
        assert client.get("/ingestion/status/pdf_unknown").status_code == 404

    def test_process_requires_object_key(self, client):
        response = client.post(
            "/ingestion/process", json={"objectKey": "", "fileName": "a.pdf", "fileHash": SAMPLE_HASH}
        )
        assert response.status_code == 422


class TestFiles:
    def test_file_by_hash(self, client):
        _process(client)
        response = client.get(f"/ingestion/file/{SAMPLE_HASH}")
        assert response.status_code == 200
        assert response.json()["status"] == "processing"

    def test_unknown_file_is_404(self, client):
        assert client.get(f"/ingestion/file/{OTHER_HASH}").status_code == 404

    def test_list_files(self, client):
        _process(client, SAMPLE_HASH)
        _process(client, OTHER_HASH)
        response = client.get("/ingestion/files", params={"limit": 10})
        assert response.status_code == 200
        assert {f["contentHash"] for f in response.json()} == {SAMPLE_HASH, OTHER_HASH}


class TestRetry:
    def test_retry_non_terminal_is_409(self, client):
        queued = _process(client)
        response = client.post(f"/ingestion/retry/{queued['jobId']}")
        assert response.status_code == 409
        assert response.json() == {"status": "error", "message": "Cannot retry job in state: queued"}

    def test_retry_unknown_is_404(self, client):
        assert client.post("/ingestion/retry/pdf_unknown").status_code == 404

    def test_retry_failed_job(self, client, job_queue, storage):
        queued = _process(client)
        storage.upload_file(f"pdfs/{SAMPLE_HASH}-1-report.pdf", b"%PDF-1.4 fake")
        asyncio.run(job_queue.mark_failed(queued["jobId"], 0, "StorageError: download failed"))

        response = client.post(f"/ingestion/retry/{queued['jobId']}")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "queued"
        assert data["originalJobId"] == queued["jobId"]
        assert data["newJobId"] != queued["jobId"]

        status = client.get(f"/ingestion/status/{data['newJobId']}").json()
        assert status["status"] == "queued"

    def test_retry_without_source_object_is_409(self, client, job_queue):
        queued = _process(client)
        asyncio.run(job_queue.mark_completed(queued["jobId"], 0, {"status": "success"}))

        response = client.post(f"/ingestion/retry/{queued['jobId']}")

        assert response.status_code == 409
        assert response.json()["message"].endswith("source object no longer exists")
        record = client.get(f"/ingestion/file/{SAMPLE_HASH}").json()
        assert record["jobId"] == queued["jobId"]
