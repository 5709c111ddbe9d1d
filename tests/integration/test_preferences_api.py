"""Integration tests: notification preference endpoints."""

from __future__ import annotations

import pytest

URL = "/api/v1/users/me/notification-preferences"


class TestPreferencesAPI:
    @pytest.mark.asyncio
    async def test_defaults(self, client, session_factory, make_user, auth_for):
        async with session_factory() as db:
            user = await make_user(db, "alice")
            await db.commit()

        response = await client.get(URL, headers=auth_for(user.id))

        assert response.status_code == 200
        prefs = response.json()["data"]
        assert prefs["email_enabled"] is True
        assert prefs["daily_summary"] is False
        assert prefs["in_app_daily_summary"] is True
        assert prefs["reminders"] == {"2_days": True, "1_day": True, "12_hours": True, "1_hour": True}

    @pytest.mark.asyncio
    async def test_partial_update_merges(self, client, session_factory, make_user, auth_for):
        async with session_factory() as db:
            user = await make_user(db, "alice", preferences={"reminders": {"2_days": False}})
            await db.commit()
        headers = auth_for(user.id)

        response = await client.put(URL, json={"reminders": {"1_hour": False}, "daily_summary": True}, headers=headers)

        assert response.status_code == 200
        prefs = response.json()["data"]
        assert prefs["reminders"] == {"2_days": False, "1_day": True, "12_hours": True, "1_hour": False}
        assert prefs["daily_summary"] is True

        stored = (await client.get(URL, headers=headers)).json()["data"]
        assert stored == prefs

    @pytest.mark.asyncio
    async def test_unknown_reminder_kind(self, client, session_factory, make_user, auth_for):
        async with session_factory() as db:
            user = await make_user(db, "alice")
            await db.commit()

        response = await client.put(URL, json={"in_app_reminders": {"3_weeks": True}}, headers=auth_for(user.id))

        assert response.status_code == 422
        assert response.json()["success"] is False
