"""
API Tests for the Pipeline Board Endpoints

Drives the FastAPI app through TestClient with the auth, board-registry
and follow-up dependencies overridden by in-memory fakes.

Tests:
- GET /api/v1/me/pipeline (board mount, columns, stats)
- POST /api/v1/me/pipeline/drag-end (noop, moved, rolled back, bad stage)
- POST /api/v1/me/pipeline/cards/{id}/view
- GET, POST /api/v1/me/pipeline/cards/{id}/activities
- POST /api/v1/me/pipeline/bulk/* (move, export)
- GET /api/v1/me/follow-ups
- POST /api/v1/auth/signout
- Health endpoints

Usage:
    cd backend && pytest tests/test_pipeline_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from fakes import FakeScoreStore, make_card, make_profile

from app.board_registry import PipelineBoardRegistry
from app.deps import get_board_registry, get_current_user, get_follow_up_service
from app.follow_up_service import FollowUpService
from app.main import app


BASE = "/api/v1/me/pipeline"


class ReminderStore:
    def __init__(self, rows):
        self.rows = rows

    async def list_pending_reminders(self, user_id):
        return self.rows


def drag_body(score_id, source, destination, source_index=0, destination_index=0):
    body = {
        "draggable_id": score_id,
        "source": {"droppable_id": source, "index": source_index},
        "destination": None,
    }
    if destination is not None:
        body["destination"] = {"droppable_id": destination, "index": destination_index}
    return body


@pytest.fixture
def store():
    return FakeScoreStore([
        make_card("s1", stage="new", ai_score=90),
        make_card("s2", stage="interested", ai_score=80),
        make_card("s3", stage="pitched", ai_score=60),
    ])


@pytest.fixture
def registry(store):
    return PipelineBoardRegistry(store)


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_current_user] = lambda: make_profile("speaker-1")
    app.dependency_overrides[get_board_registry] = lambda: registry
    app.dependency_overrides[get_follow_up_service] = lambda: FollowUpService(
        ReminderStore([
            {
                "id": "r1",
                "match_id": "s3",
                "reminder_type": "first",
                "due_date": "2020-01-01",
                "is_completed": False,
                "opportunity_scores": {"opportunities": {"id": "opp-s3", "event_name": "Event s3"}},
            }
        ])
    )
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def column(board, stage):
    return next(c for c in board["columns"] if c["stage"] == stage)


# ============================================================================
# BOARD
# ============================================================================

class TestBoard:

    def test_get_board_mounts_and_loads_once(self, client, store):
        response = client.get(BASE)
        assert response.status_code == 200

        board = response.json()
        assert [c["stage"] for c in board["columns"]] == [
            "new", "interested", "pitched", "negotiating", "accepted", "rejected",
        ]
        assert [card["score_id"] for card in column(board, "new")["cards"]] == ["s1"]
        assert board["stats"]["pitched"] == 1
        assert board["stats"]["completed"] == 0
        assert board["total"] == 3

        client.get(BASE)
        assert store.calls.count(("list_scores_for_user", "speaker-1")) == 1

    def test_refresh_reloads(self, client, store):
        client.get(BASE)
        client.post(f"{BASE}/refresh")
        assert store.calls.count(("list_scores_for_user", "speaker-1")) == 2


# ============================================================================
# DRAG END
# ============================================================================

class TestDragEnd:

    def test_drop_outside_column_is_noop(self, client, store):
        response = client.post(f"{BASE}/drag-end", json=drag_body("s1", "new", None))

        assert response.status_code == 200
        assert response.json()["outcome"] == "noop"
        assert store.updates == []

    def test_move_persists_and_returns_board(self, client, store, registry):
        response = client.post(f"{BASE}/drag-end", json=drag_body("s1", "new", "accepted"))

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "moved"
        assert [c["score_id"] for c in column(body["board"], "accepted")["cards"]] == ["s1"]
        assert store.updates[0][0] == "s1"
        assert store.updates[0][1]["pipeline_stage"] == "accepted"
        assert "accepted_at" in store.updates[0][1]
        assert any(n["message"] == 'Moved to "Accepted"' for n in body["board"]["notifications"])

        client.portal.call(registry.get("speaker-1").drain)
        assert [a.notes for a in store.activities] == ['Moved to "Accepted" stage']

    def test_failed_write_rolls_back(self, client, store):
        store.fail_update = True
        response = client.post(f"{BASE}/drag-end", json=drag_body("s1", "new", "rejected"))

        body = response.json()
        assert body["outcome"] == "rolled_back"
        assert [c["score_id"] for c in column(body["board"], "new")["cards"]] == ["s1"]
        assert column(body["board"], "rejected")["cards"] == []
        assert any(n["level"] == "error" for n in body["board"]["notifications"])

    def test_drag_of_card_not_on_board_is_noop(self, client, store):
        response = client.post(f"{BASE}/drag-end", json=drag_body("victim", "new", "rejected"))

        assert response.status_code == 200
        assert response.json()["outcome"] == "noop"
        assert store.updates == []

    def test_unknown_stage_is_rejected(self, client, store):
        response = client.post(f"{BASE}/drag-end", json=drag_body("s1", "new", "booked"))

        assert response.status_code == 422
        assert store.updates == []

    def test_negative_index_fails_validation(self, client):
        response = client.post(
            f"{BASE}/drag-end", json=drag_body("s1", "new", "accepted", destination_index=-1)
        )
        assert response.status_code == 422


# ============================================================================
# CARD DETAIL
# ============================================================================

class TestViewCard:

    def test_view_card_records_viewed_at(self, client, store):
        response = client.post(f"{BASE}/cards/s2/view")

        assert response.status_code == 200
        assert response.json()["event_name"] == "Event s2"
        assert store.updates[0][0] == "s2"
        assert set(store.updates[0][1]) == {"viewed_at"}

    def test_view_unknown_card_is_404(self, client):
        response = client.post(f"{BASE}/cards/missing/view")
        assert response.status_code == 404


# ============================================================================
# ACTIVITY TIMELINE
# ============================================================================

class TestCardActivity:

    def test_log_and_list_activities(self, client, store):
        response = client.post(
            f"{BASE}/cards/s2/activities",
            json={"activity_type": "call", "notes": "Spoke with the program chair"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["logged"] is True
        assert [n["message"] for n in body["notifications"]] == ["Activity logged"]
        assert [a["notes"] for a in body["timeline"]["activities"]] == ["Spoke with the program chair"]

        client.post(f"{BASE}/cards/s2/activities", json={"subject": "Sent speaker kit"})
        timeline = client.get(f"{BASE}/cards/s2/activities").json()
        assert [a["subject"] for a in timeline["activities"]] == ["Sent speaker kit", None]
        assert timeline["next_follow_up"] is None

    def test_pitched_card_includes_next_follow_up(self, client, store):
        store.reminders["s3"] = {
            "id": "r7", "reminder_type": "follow_up_1", "due_date": "2020-01-01", "is_completed": False,
        }
        timeline = client.get(f"{BASE}/cards/s3/activities").json()

        assert timeline["next_follow_up"]["id"] == "r7"
        assert timeline["next_follow_up"]["days_until_due"] < 0

    def test_card_not_on_board_is_404(self, client, store):
        assert client.get(f"{BASE}/cards/victim/activities").status_code == 404
        response = client.post(f"{BASE}/cards/victim/activities", json={"notes": "hello"})
        assert response.status_code == 404
        assert store.activities == []

    def test_empty_activity_fails_validation(self, client, store):
        response = client.post(f"{BASE}/cards/s1/activities", json={"notes": "   "})
        assert response.status_code == 422
        assert store.activities == []

    def test_timeline_read_failure_is_500(self, client, store):
        store.fail_list_activities = True
        response = client.get(f"{BASE}/cards/s1/activities")
        assert response.status_code == 500
        assert "Please try again" in response.json()["detail"]


# ============================================================================
# BULK ACTIONS
# ============================================================================

class TestBulkEndpoints:

    def test_bulk_move(self, client, store):
        response = client.post(f"{BASE}/bulk/move", json={"score_ids": ["s1", "s2"], "stage": "negotiating"})

        assert response.status_code == 200
        body = response.json()
        assert body["affected"] == 2
        assert len(column(body["board"], "negotiating")["cards"]) == 2

    def test_bulk_move_rejects_unknown_stage(self, client):
        response = client.post(f"{BASE}/bulk/move", json={"score_ids": ["s1"], "stage": "booked"})
        assert response.status_code == 422

    def test_export_downloads_csv(self, client):
        response = client.post(f"{BASE}/bulk/export", json={"score_ids": ["s1"]})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "nextmic-pipeline-export-" in response.headers["content-disposition"]
        assert response.text.startswith('"Event Name"')
        assert '"Event s1"' in response.text


# ============================================================================
# FOLLOW-UPS, SIGN-OUT, HEALTH
# ============================================================================

class TestFollowUps:

    def test_lists_pending_reminders(self, client):
        response = client.get("/api/v1/me/follow-ups")

        assert response.status_code == 200
        body = response.json()
        assert body["overdue_count"] == 1
        assert body["reminders"][0]["event_name"] == "Event s3"


class TestSignOut:

    def test_signout_releases_board(self, client, registry, store):
        client.get(BASE)
        engine = registry.get("speaker-1")

        response = client.post("/api/v1/auth/signout")

        assert response.json() == {"status": "signed_out", "board_released": True}
        assert registry.get("speaker-1") is None
        assert not engine.session.is_active

        client.get(BASE)
        assert registry.get("speaker-1") is not engine
        assert store.calls.count(("list_scores_for_user", "speaker-1")) == 2

    def test_signout_without_board(self, client):
        response = client.post("/api/v1/auth/signout")
        assert response.json()["board_released"] is False


class TestHealth:

    def test_root(self, client):
        assert client.get("/").json()["status"] == "ok"

    def test_health_reports_capabilities(self, client):
        body = client.get("/api/v1/health").json()
        assert body["status"] in ("healthy", "degraded")
        assert "active_boards" in body
