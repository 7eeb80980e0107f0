"""
API tests for app.server, with the pipelines running against fakes.
"""

import pytest
from fastapi.testclient import TestClient

from app.server import create_app
from docqa.utils.sse import SSEDecoder


@pytest.fixture
def client(context):
    with TestClient(create_app(context=context)) as test_client:
        yield test_client


def _upload(client, *files):
    return client.post(
        "/api/ingest",
        files=[("files", (name, body.encode("utf-8"), "text/plain")) for name, body in files],
    )


@pytest.fixture
def loaded(client):
    response = _upload(
        client,
        ("alpha.txt", "apple apple apple banana"),
        ("beta.txt", "cherry cherry grape grape"),
    )
    assert response.status_code == 200
    return client


def _records(response) -> list[dict]:
    return SSEDecoder().feed(response.content)


class TestHealth:
    def test_fresh_store_is_consistent(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["index_size"] == 0
        assert body["file_search_enabled"] is False

    def test_reports_divergence(self, client, context):
        import numpy as np

        context.index.append(np.ones((1, context.settings.embedding.dimensions), dtype=np.float32))
        assert client.get("/api/health").json()["status"] == "inconsistent"


class TestIngest:
    def test_multipart_upload(self, client):
        response = _upload(client, ("notes.txt", "apple banana cherry"))

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total_chunks"] == 1
        assert body["files"][0]["document_id"].startswith("notes.txt-")

    def test_single_file_field(self, client):
        response = client.post("/api/ingest", files={"file": ("one.txt", b"grape", "text/plain")})
        assert response.status_code == 200
        assert response.json()["files"][0]["file_name"] == "one.txt"

    def test_no_files_is_bad_request(self, client):
        response = client.post("/api/ingest")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing file(s)"


class TestQuery:
    def test_answer_with_sources(self, loaded):
        response = loaded.post("/api/query", json={"query": "apple banana", "topK": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["answer"] == "Apples are listed [1]."
        assert [s["document_name"] for s in body["sources"]] == ["alpha.txt"]
        assert body["citations_summary"][0]["filename"] == "alpha.txt"
        assert body["usage"]["completion_tokens"] == 15

    def test_empty_query_is_bad_request(self, client):
        response = client.post("/api/query", json={"query": "   "})
        assert response.status_code == 400

    def test_consistency_failure_is_conflict(self, loaded, context, fake_embedder):
        # A vector with no stored row, placed exactly on the query
        context.index.append(fake_embedder.embed_query("apple banana").vectors)

        response = loaded.post("/api/query", json={"query": "apple banana", "topK": 1})

        assert response.status_code == 409
        assert response.json()["missing_ids"] == [2]


class TestQueryStream:
    def test_text_events_then_sources(self, loaded):
        response = loaded.post("/api/query/stream", json={"query": "apple banana", "topK": 2})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        records = _records(response)
        assert [r["type"] for r in records] == ["text", "text", "sources"]
        assert "".join(r["delta"] for r in records[:-1]) == "Apples are listed [1]."
        assert len(records[-1]["sources"]) == 2

    def test_empty_query_rejected_before_streaming(self, client):
        response = client.post("/api/query/stream", json={"query": ""})
        assert response.status_code == 400

    def test_generation_failure_ends_with_error(self, loaded, fake_generator):
        fake_generator.fail_stream = True

        records = _records(loaded.post("/api/query/stream", json={"query": "apple"}))

        assert records[-1]["type"] == "error"
        assert all(r["type"] != "sources" for r in records)


class TestDocuments:
    def test_documents_and_stats(self, loaded):
        body = loaded.get("/api/documents").json()

        assert {d["document_name"] for d in body["documents"]} == {"alpha.txt", "beta.txt"}
        assert body["stats"] == {"total_documents": 2, "total_chunks": 2, "total_vectors": 2}


class TestFileSearch:
    def test_without_vector_store_is_bad_request(self, client):
        response = client.post("/api/file-search/stream", json={"query": "renewal"})
        assert response.status_code == 400
        assert "Vector store not initialized" in response.json()["error"]


class TestReindex:
    def test_restores_lost_vectors(self, loaded, context):
        context.index.faiss_index.reset()
        assert loaded.get("/api/health").json()["status"] == "inconsistent"

        response = loaded.post("/api/reindex")

        assert response.status_code == 200
        body = response.json()
        assert body["appended"] == 2
        assert body["consistent"] is True
        assert loaded.get("/api/health").json()["status"] == "ok"

    def test_index_ahead_is_conflict_without_full(self, loaded, context):
        import numpy as np

        context.index.append(np.ones((1, context.settings.embedding.dimensions), dtype=np.float32))

        assert loaded.post("/api/reindex").status_code == 409
        response = loaded.post("/api/reindex", json={"full": True})
        assert response.status_code == 200
        assert response.json()["index_size"] == 2


class TestVectorStore:
    def test_store_created_once(self, client, hosted_client):
        first = client.get("/api/vector-store").json()
        second = client.get("/api/vector-store").json()

        assert first == second == {"vector_store_id": "vs_1", "name": "docqa"}
        assert hosted_client.created_stores == ["docqa"]
        assert client.get("/api/health").json()["file_search_enabled"] is True

    def test_ingest_requires_store(self, client):
        response = client.post("/api/vector-store/ingest", files={"file": ("a.md", b"# A", "text/markdown")})
        assert response.status_code == 400
        assert response.json()["error"] == "Vector store not initialized"

    def test_ingest_missing_file(self, client):
        client.get("/api/vector-store")
        response = client.post("/api/vector-store/ingest")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing file"

    def test_ingest_then_list_and_status(self, client, hosted_client):
        client.get("/api/vector-store")

        uploaded = client.post(
            "/api/vector-store/ingest", files={"file": ("guide.md", b"# Guide", "text/markdown")}
        ).json()
        hosted_client.statuses[uploaded["file_id"]] = "completed"
        listing = client.get("/api/vector-store/files")
        status = client.get(f"/api/vector-store/files/{uploaded['file_id']}")

        assert uploaded == {"file_id": "file-1", "file_name": "guide.md", "vector_store_id": "vs_1"}
        assert listing.headers["cache-control"] == "no-store"
        assert [(f["filename"], f["status"]) for f in listing.json()["files"]] == [("guide.md", "completed")]
        assert status.json()["status"] == "completed"
        assert status.json()["filename"] == "guide.md"

    def test_files_empty_before_store(self, client):
        assert client.get("/api/vector-store/files").json() == {"files": [], "vector_store_id": None}

    def test_sdk_failure_is_bad_gateway(self, client, hosted_client):
        from openai import OpenAIError

        hosted_client.error = OpenAIError("service unavailable")

        response = client.get("/api/vector-store")

        assert response.status_code == 502
        assert response.json()["service"] == "vector_store"
