"""Integration tests for the Timeline Studio FastAPI backend.

Uses FastAPI TestClient to exercise every router end-to-end with real
HTTP requests through the ASGI stack.  The generation provider, frame
extractor and ffmpeg assembler are replaced by in-process fakes; the
timeline store is a real SQLite file in a temp dir.

Background tasks run before TestClient returns the response, so a run
started with POST is finished by the time the next request is made.
"""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from backend.main import app
from backend.routers import deps
from backend.services.shared.config import get_config, reset_config
from backend.services.shared.timeline_store import TimelineStore
from backend.services.video.assembler import TimelineAssembler
from backend.services.video.render_jobs import RenderJobManager


# ─────────────────────────────────────────────────────────────────────────────
# Shared fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def provider(backend_factory):
    return backend_factory()


@pytest.fixture
def client(sample_settings, small_registry, tmp_dir, provider, fake_extractor):
    reset_config()
    get_config(str(sample_settings))
    deps.reset()
    deps.set_registry(small_registry)
    deps.set_store(TimelineStore(db_path=str(tmp_dir / "timelines.db")))
    deps.set_backend(provider)
    deps.set_extractor(fake_extractor)
    assembler = MagicMock(spec=TimelineAssembler)
    assembler.assemble.side_effect = lambda clips, transitions, output_path, resolution, fps: output_path
    deps.set_render_manager(RenderJobManager(assembler=assembler, output_dir=str(tmp_dir / "renders")))
    with TestClient(app) as c:
        yield c
    deps.reset()
    reset_config()


def _create(client: TestClient, specs, name: str = "Coastline") -> dict:
    """Create a timeline from ``(duration, model, prompt)`` tuples via import."""
    resp = client.post("/api/timelines/import", json={
        "name": name,
        "segments": [
            {"segment_id": i + 1, "duration_sec": d, "model": m, "prompt": p}
            for i, (d, m, p) in enumerate(specs)
        ],
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


THREE_SHOTS = [
    (5.0, "model-y", "a lighthouse on a cliff at dusk"),
    (4.0, "model-y", "waves crashing below the lighthouse"),
    (6.0, "model-y", "the lighthouse beam sweeping the sea"),
]


# ─────────────────────────────────────────────────────────────────────────────
# System & models
# ─────────────────────────────────────────────────────────────────────────────


class TestSystemRouter:
    def test_health_check_returns_ok(self, client: TestClient):
        resp = client.get("/api/system/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": "1.0.0"}

    def test_status_reports_registry(self, client: TestClient):
        data = client.get("/api/system/status").json()
        assert data["provider_configured"] is True
        assert data["models_total"] == 5
        assert data["models_available"] == 4
        assert isinstance(data["ffmpeg"], bool)


class TestModelRouter:
    def test_list_all(self, client: TestClient):
        data = client.get("/api/models/").json()
        assert data["total"] == 5

    def test_list_available(self, client: TestClient):
        ids = {m["model_id"] for m in client.get("/api/models/", params={"available_only": True}).json()["models"]}
        assert "model-z" not in ids
        assert len(ids) == 4

    def test_list_preview(self, client: TestClient):
        models = client.get("/api/models/", params={"preview_only": True}).json()["models"]
        assert [m["model_id"] for m in models] == ["preview-fast"]

    def test_list_high_quality_uses_configured_threshold(self, client: TestClient):
        models = client.get("/api/models/", params={"high_quality_only": True}).json()["models"]
        assert {m["model_id"] for m in models} == {"model-x", "model-y"}

    def test_get_model(self, client: TestClient):
        data = client.get("/api/models/model-y").json()
        assert data["max_duration"] == 10.0
        assert data["supports_full_chaining"] is True
        assert data["priority"] == "standard"

    def test_unknown_model_is_404(self, client: TestClient):
        assert client.get("/api/models/ghost").status_code == 404


# ─────────────────────────────────────────────────────────────────────────────
# Timeline CRUD
# ─────────────────────────────────────────────────────────────────────────────


class TestTimelineCrud:
    def test_create_timeline(self, client: TestClient):
        resp = client.post("/api/timelines/", json={"name": "Trailer", "model": "model-y"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["name"] == "Trailer"
        assert len(data["segments"]) == 1
        assert data["segments"][0]["model"] == "model-y"
        assert data["segments"][0]["status"] == "pending"
        assert data["total_duration_sec"] == 5.0

    def test_list_and_get(self, client: TestClient):
        created = _create(client, THREE_SHOTS)
        listing = client.get("/api/timelines/").json()
        assert listing["total"] == 1
        assert listing["timelines"][0]["segment_count"] == 3
        fetched = client.get(f"/api/timelines/{created['timeline_id']}").json()
        assert fetched["total_duration_sec"] == 15.0

    def test_unknown_timeline_is_404(self, client: TestClient):
        assert client.get("/api/timelines/missing").status_code == 404

    def test_update_properties(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.patch(f"/api/timelines/{tid}", json={"name": "Harbour", "tags": ["sea"]})
        assert resp.status_code == 200
        assert resp.json()["name"] == "Harbour"
        assert resp.json()["tags"] == ["sea"]

    def test_delete(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.delete(f"/api/timelines/{tid}").status_code == 204
        assert client.get(f"/api/timelines/{tid}").status_code == 404
        assert client.delete(f"/api/timelines/{tid}").status_code == 404

    def test_export_then_import_gets_fresh_id(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.get(f"/api/timelines/{tid}/export")
        assert resp.status_code == 200
        assert "attachment" in resp.headers["content-disposition"]
        imported = client.post("/api/timelines/import", json=resp.json())
        assert imported.status_code == 201
        assert imported.json()["timeline_id"] != tid
        assert len(imported.json()["segments"]) == 3

    def test_invalid_import_is_422(self, client: TestClient):
        resp = client.post("/api/timelines/import", json={"name": "empty", "segments": []})
        assert resp.status_code == 422

    def test_from_scenario(self, client: TestClient):
        resp = client.post("/api/timelines/from-scenario", json={
            "name": "Ocean Story",
            "segments": [{"prompt_text": "open water at sunrise", "model_id": "model-y", "duration_sec": 6}],
        })
        assert resp.status_code == 201
        assert resp.json()["segments"][0]["prompt"] == "open water at sunrise"


# ─────────────────────────────────────────────────────────────────────────────
# Segment editing
# ─────────────────────────────────────────────────────────────────────────────


class TestSegmentEditing:
    def test_add_segment(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post(f"/api/timelines/{tid}/segments",
                           json={"after_segment_id": 1, "prompt": "a gull lands on the rail", "model": "model-x"})
        assert resp.status_code == 201
        assert resp.json()["segment_id"] == 4
        ids = [s["segment_id"] for s in client.get(f"/api/timelines/{tid}").json()["segments"]]
        assert ids == [1, 4, 2, 3]

    def test_update_segment_marks_modified(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.patch(f"/api/timelines/{tid}/segments/2", json={"prompt": "a calm sea", "transition": "dissolve"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "modified"
        assert resp.json()["transition"] == "dissolve"

    def test_null_clears_frame(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        client.patch(f"/api/timelines/{tid}/segments/1", json={"first_frame": "start.png"})
        resp = client.patch(f"/api/timelines/{tid}/segments/1", json={"first_frame": None})
        assert resp.json()["first_frame"] is None

    def test_null_model_is_ignored(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.patch(f"/api/timelines/{tid}/segments/1", json={"model": None, "prompt": "new prompt here"})
        assert resp.json()["model"] == "model-y"

    def test_invalid_enum_is_422(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.patch(f"/api/timelines/{tid}/segments/1", json={"transition": "spin"}).status_code == 422

    def test_non_positive_duration_is_422(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.patch(f"/api/timelines/{tid}/segments/1", json={"duration_sec": 0}).status_code == 422

    @pytest.mark.parametrize("literal", ["Infinity", "NaN", "1e999"])
    def test_non_finite_duration_is_422(self, client: TestClient, literal):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.patch(f"/api/timelines/{tid}/segments/1",
                            content='{"duration_sec": ' + literal + '}',
                            headers={"Content-Type": "application/json"})
        assert resp.status_code == 422
        assert client.get(f"/api/timelines/{tid}").json()["segments"][0]["duration_sec"] == 5.0
        assert client.get(f"/api/timelines/{tid}/segments/1/routing").status_code == 200

    def test_unknown_segment_is_404(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.patch(f"/api/timelines/{tid}/segments/99", json={"prompt": "x"}).status_code == 404

    def test_reorder(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post(f"/api/timelines/{tid}/segments/reorder", json={"from_index": 2, "to_index": 0})
        assert [s["segment_id"] for s in resp.json()["segments"]] == [3, 1, 2]

    def test_duplicate(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post(f"/api/timelines/{tid}/segments/2/duplicate")
        assert resp.status_code == 201
        assert resp.json()["segment_id"] == 4
        assert resp.json()["prompt"] == THREE_SHOTS[1][2]

    def test_remove_last_segment_is_422(self, client: TestClient):
        tid = _create(client, [(5.0, "model-y", "the only shot in the film")])["timeline_id"]
        assert client.delete(f"/api/timelines/{tid}/segments/1").status_code == 422

    def test_remove_segment(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.delete(f"/api/timelines/{tid}/segments/2").status_code == 204
        assert len(client.get(f"/api/timelines/{tid}").json()["segments"]) == 2


# ─────────────────────────────────────────────────────────────────────────────
# Routing, splitting, analysis
# ─────────────────────────────────────────────────────────────────────────────


SPLIT_SCENARIO = [
    (5.0, "model-x", "a fox crossing a frozen river"),
    (3.0, "model-y", "the fox pauses on the far bank"),
    (4.0, "model-y", "the fox disappears into the pines"),
]


class TestRoutingAndSplit:
    def test_routing_reports_split(self, client: TestClient):
        tid = _create(client, SPLIT_SCENARIO)["timeline_id"]
        data = client.get(f"/api/timelines/{tid}/segments/1/routing").json()
        assert data["requires_split"] is True
        assert data["suggested_segments"] == 2
        assert data["recommended_model"] == "model-x"

    def test_routing_unknown_segment_is_404(self, client: TestClient):
        tid = _create(client, SPLIT_SCENARIO)["timeline_id"]
        assert client.get(f"/api/timelines/{tid}/segments/42/routing").status_code == 404

    def test_split_scenario(self, client: TestClient):
        tid = _create(client, SPLIT_SCENARIO)["timeline_id"]
        data = client.post(f"/api/timelines/{tid}/segments/1/split").json()
        assert data["split"] is True
        assert [s["duration_sec"] for s in data["timeline"]["segments"]] == [2.5, 2.5, 3.0, 4.0]
        stored = client.get(f"/api/timelines/{tid}").json()
        assert len(stored["segments"]) == 4

    def test_split_not_needed(self, client: TestClient):
        tid = _create(client, SPLIT_SCENARIO)["timeline_id"]
        data = client.post(f"/api/timelines/{tid}/segments/2/split").json()
        assert data["split"] is False
        assert len(data["timeline"]["segments"]) == 3


class TestAnalysis:
    def test_consistency(self, client: TestClient):
        tid = _create(client, [
            (5.0, "model-y", "a busy market during the day"),
            (5.0, "model-y", "the same market empty at night"),
        ])["timeline_id"]
        data = client.get(f"/api/timelines/{tid}/consistency").json()
        assert data["is_consistent"] is False
        assert data["overall_score"] == 80
        assert data["issues"][0]["issue_type"] == "lighting_inconsistency"

    def test_estimate(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        data = client.get(f"/api/timelines/{tid}/estimate").json()
        # 3.5 tokens/s on model-y: 17.5 → 18, 14, 21
        assert data["total_tokens"] == 53
        assert data["total_time_sec"] == 180.0
        assert data["unknown_models"] == []


# ─────────────────────────────────────────────────────────────────────────────
# Generation runs
# ─────────────────────────────────────────────────────────────────────────────


class TestGeneration:
    def test_full_run_chains_frames(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post(f"/api/timelines/{tid}/generate")
        assert resp.status_code == 202
        assert resp.json()["status"] == "queued"

        run = client.get(f"/api/timelines/{tid}/run").json()
        assert run["running"] is False
        assert [s["status"] for s in run["segments"]] == ["generated"] * 3

        segments = client.get(f"/api/timelines/{tid}").json()["segments"]
        assert segments[1]["first_frame"] == "frame:1"
        assert segments[2]["first_frame"] == "frame:2"

    def test_partial_failure_then_retry(self, client: TestClient, provider):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        provider.fail_prompts.add(THREE_SHOTS[1][2])
        client.post(f"/api/timelines/{tid}/generate")

        run = client.get(f"/api/timelines/{tid}/run").json()
        assert [s["status"] for s in run["segments"]] == ["generated", "error", "generated"]
        assert "provider rejected" in run["segments"][1]["error_message"]

        provider.fail_prompts.clear()
        resp = client.post(f"/api/timelines/{tid}/segments/2/retry")
        assert resp.status_code == 202
        run = client.get(f"/api/timelines/{tid}/run").json()
        assert run["segments"][1]["status"] == "generated"
        assert run["segments"][1]["error_message"] is None

    def test_retry_unknown_segment_is_404(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.post(f"/api/timelines/{tid}/segments/9/retry").status_code == 404

    def test_generate_unknown_timeline_is_404(self, client: TestClient):
        assert client.post("/api/timelines/missing/generate").status_code == 404

    def test_run_in_flight_blocks_edits_and_second_run(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        deps.claim_run(tid)
        try:
            assert client.post(f"/api/timelines/{tid}/generate").status_code == 409
            assert client.patch(f"/api/timelines/{tid}/segments/1", json={"prompt": "x"}).status_code == 409
            assert client.get(f"/api/timelines/{tid}/run").json()["running"] is True
        finally:
            deps.release_run(tid)

    def test_preview_keeps_status(self, client: TestClient, provider):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post(f"/api/timelines/{tid}/preview", json={"concurrency": 2})
        assert resp.status_code == 202
        segments = client.get(f"/api/timelines/{tid}").json()["segments"]
        assert all(s["status"] == "pending" for s in segments)
        assert all(s["model"] == "model-y" for s in segments)
        assert all(s["preview_video_url"].startswith("https://cdn.test/preview-fast/") for s in segments)
        assert {r.model_id for r in provider.requests} == {"preview-fast"}

    def test_preview_without_body(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        assert client.post(f"/api/timelines/{tid}/preview").status_code == 202

    def test_chain_endpoint_uses_extractor(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        client.post(f"/api/timelines/{tid}/generate")
        data = client.post(f"/api/timelines/{tid}/chain").json()
        assert data["segments"][1]["first_frame"] == "extracted:https://cdn.test/model-y/1.mp4:near_end"


# ─────────────────────────────────────────────────────────────────────────────
# Render jobs
# ─────────────────────────────────────────────────────────────────────────────


class TestRenderJobs:
    def test_render_ungenerated_timeline_fails(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        resp = client.post("/api/jobs/render", json={"timeline_id": tid})
        assert resp.status_code == 202
        job = client.get(f"/api/jobs/{resp.json()['job_id']}").json()
        assert job["status"] == "failed"
        assert job["error"] == "Segments not generated: [1, 2, 3]"

    def test_render_generated_timeline(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        client.post(f"/api/timelines/{tid}/generate")
        job_id = client.post("/api/jobs/render", json={"timeline_id": tid}).json()["job_id"]
        job = client.get(f"/api/jobs/{job_id}").json()
        assert job["status"] == "completed"
        assert job["progress_percent"] == 100
        assert job["output_url"].endswith(f"{job_id}.mp4")

    def test_each_render_is_a_new_job(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        a = client.post("/api/jobs/render", json={"timeline_id": tid}).json()["job_id"]
        b = client.post("/api/jobs/render", json={"timeline_id": tid}).json()["job_id"]
        assert a != b
        listing = client.get("/api/jobs/", params={"timeline_id": tid}).json()
        assert listing["total"] == 2

    def test_render_unknown_timeline_is_404(self, client: TestClient):
        assert client.post("/api/jobs/render", json={"timeline_id": "missing"}).status_code == 404

    def test_unknown_job_is_404(self, client: TestClient):
        assert client.get("/api/jobs/render_0_missing").status_code == 404

    def test_websocket_reports_terminal_state(self, client: TestClient):
        tid = _create(client, THREE_SHOTS)["timeline_id"]
        job_id = client.post("/api/jobs/render", json={"timeline_id": tid}).json()["job_id"]
        with client.websocket_connect(f"/api/jobs/ws/{job_id}") as ws:
            message = ws.receive_json()
        assert message["job_id"] == job_id
        assert message["status"] == "failed"
        assert message["total_segments"] == 3

    def test_websocket_unknown_job(self, client: TestClient):
        with client.websocket_connect("/api/jobs/ws/render_0_missing") as ws:
            message = ws.receive_json()
        assert message["status"] == "failed"
        assert "not found" in message["error"]
