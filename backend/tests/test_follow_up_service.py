"""
Unit Tests for Follow-up Reminders and the Functions Gateway

Tests:
- build_follow_up_reminders: three rows at the configured day offsets
- FollowUpService.create_follow_up_reminders as a gateway function
- FollowUpService.list_pending: name resolution and overdue counting
- FunctionsGateway: local handlers, edge-function fallback, error wrapping

Usage:
    cd backend && pytest tests/test_follow_up_service.py -v
"""

import asyncio
import json
from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest

from fakes import MockSupabaseClient

from app.follow_up_service import (
    CREATE_FOLLOW_UP_REMINDERS,
    FollowUpService,
    build_follow_up_reminders,
)
from app.functions_gateway import FunctionInvocationError, FunctionsGateway
from app.score_store import SupabaseScoreStore


PITCH_DATE = datetime(2026, 10, 18, 22, 45, tzinfo=timezone.utc)


# ============================================================================
# REMINDER ROWS
# ============================================================================

class TestBuildFollowUpReminders:

    def test_default_intervals(self):
        rows = build_follow_up_reminders("speaker-1", "s1", PITCH_DATE, [7, 14, 21])

        assert [r["reminder_type"] for r in rows] == ["first", "second", "final"]
        assert [r["due_date"] for r in rows] == ["2026-10-25", "2026-11-01", "2026-11-08"]
        assert all(r["speaker_id"] == "speaker-1" and r["match_id"] == "s1" for r in rows)

    def test_custom_intervals(self):
        rows = build_follow_up_reminders("speaker-1", "s1", PITCH_DATE, [5, 10, 20])
        assert [r["due_date"] for r in rows] == ["2026-10-23", "2026-10-28", "2026-11-07"]

    def test_due_dates_use_utc_calendar_day(self):
        pitched_late_evening_in_chicago = "2026-10-18T21:00:00-05:00"
        rows = build_follow_up_reminders("speaker-1", "s1", pitched_late_evening_in_chicago, [1, 2, 3])
        assert rows[0]["due_date"] == "2026-10-20"

    def test_requires_three_intervals(self):
        with pytest.raises(ValueError):
            build_follow_up_reminders("speaker-1", "s1", PITCH_DATE, [7, 14])


# ============================================================================
# SERVICE
# ============================================================================

@pytest.fixture
def client():
    return MockSupabaseClient({"follow_up_reminders": []})


@pytest.fixture
def gateway(client):
    gateway = FunctionsGateway(None)
    store = SupabaseScoreStore(client, gateway)
    FollowUpService(store).register(gateway)
    return gateway


class TestFollowUpService:

    def test_gateway_function_inserts_reminders(self, gateway, client):
        result = asyncio.run(
            gateway.invoke(
                CREATE_FOLLOW_UP_REMINDERS,
                {
                    "userId": "speaker-1",
                    "scoreId": "s1",
                    "pitchDate": PITCH_DATE.isoformat(),
                    "intervals": [5, 10, 20],
                },
            )
        )

        assert len(result["reminders"]) == 3
        insert = client.writes("follow_up_reminders", "insert")[0]
        assert [row["due_date"] for row in insert.payload] == ["2026-10-23", "2026-10-28", "2026-11-07"]
        assert len(client.tables["follow_up_reminders"]) == 3

    def test_missing_intervals_fall_back_to_defaults(self, gateway, client):
        asyncio.run(
            gateway.invoke(
                CREATE_FOLLOW_UP_REMINDERS,
                {"userId": "speaker-1", "scoreId": "s1", "pitchDate": PITCH_DATE.isoformat()},
            )
        )
        insert = client.writes("follow_up_reminders", "insert")[0]
        assert insert.payload[2]["due_date"] == "2026-11-08"

    def test_insert_failure_propagates(self, gateway, client):
        client.fail("follow_up_reminders", "insert")
        with pytest.raises(Exception):
            asyncio.run(
                gateway.invoke(
                    CREATE_FOLLOW_UP_REMINDERS,
                    {"userId": "speaker-1", "scoreId": "s1", "intervals": [7, 14, 21]},
                )
            )

    def test_list_pending_resolves_names_and_counts_overdue(self):
        store = MagicMock()

        async def list_pending_reminders(user_id):
            return [
                {
                    "id": "r1",
                    "match_id": "s1",
                    "reminder_type": "first",
                    "due_date": "2026-10-10",
                    "is_completed": False,
                    "opportunity_scores": {
                        "id": "s1",
                        "opportunities": {"id": "opp-1", "event_name": "DevCon", "organizer_name": "Dev Org"},
                    },
                },
                {
                    "id": "r2",
                    "match_id": "s2",
                    "reminder_type": "second",
                    "due_date": "2026-10-18",
                    "is_completed": False,
                    "opportunity_scores": {"id": "s2", "opportunities": None},
                },
            ]

        store.list_pending_reminders = list_pending_reminders
        result = asyncio.run(FollowUpService(store).list_pending("speaker-1", today=date(2026, 10, 18)))

        assert [r.event_name for r in result.reminders] == ["DevCon", "Unknown Event"]
        assert result.reminders[0].opportunity_id == "opp-1"
        assert result.reminders[1].opportunity_id == ""
        assert result.overdue_count == 1


# ============================================================================
# FUNCTIONS GATEWAY
# ============================================================================

class TestFunctionsGateway:

    def test_local_handler_wins(self):
        supabase_client = MagicMock()
        gateway = FunctionsGateway(supabase_client)

        async def handler(payload):
            return {"handled": payload["x"]}

        gateway.register("local-fn", handler)
        assert gateway.is_local("local-fn")
        assert asyncio.run(gateway.invoke("local-fn", {"x": 1})) == {"handled": 1}
        supabase_client.functions.invoke.assert_not_called()

    def test_edge_function_response_is_decoded(self):
        supabase_client = MagicMock()
        supabase_client.functions.invoke.return_value = json.dumps({"pitch": "Hello"}).encode()
        gateway = FunctionsGateway(supabase_client)

        result = asyncio.run(gateway.invoke("generate-pitch", {"opportunityId": "opp-1"}))

        assert result == {"pitch": "Hello"}
        supabase_client.functions.invoke.assert_called_once_with(
            "generate-pitch", invoke_options={"body": {"opportunityId": "opp-1"}}
        )

    def test_edge_function_error_is_wrapped(self):
        supabase_client = MagicMock()
        supabase_client.functions.invoke.side_effect = RuntimeError("502 Bad Gateway")
        gateway = FunctionsGateway(supabase_client)

        with pytest.raises(FunctionInvocationError) as exc_info:
            asyncio.run(gateway.invoke("generate-pitch", {}))
        assert exc_info.value.name == "generate-pitch"

    def test_unconfigured_client_raises(self):
        with pytest.raises(FunctionInvocationError):
            asyncio.run(FunctionsGateway(None).invoke("generate-pitch", {}))
