"""Fitbit platform adapter.

Reads daily activity summaries from the Fitbit Web API on behalf of a
linked user.  The user's access token comes from the credential store; the
adapter never refreshes it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date

import httpx
from sqlalchemy.engine import Engine

from marathon.helpers.credential_store import get_tokens
from marathon.helpers.settings import MarathonConfig
from marathon.helpers.store_db import get_session

logger = logging.getLogger(__name__)

DAILY_ACTIVITY_URL = "https://api.fitbit.com/1/user/-/activities/date"


class FitbitApiError(Exception):
    """The Fitbit API answered with an ``errors`` payload."""


@dataclass(frozen=True)
class DailyActivity:
    steps: int
    calories: int


class FitbitClient:
    """Async client for the Fitbit daily activity endpoint."""

    name = "fitbit"

    def __init__(self, engine: Engine, timeout: float = 2.0) -> None:
        self._engine = engine
        self.timeout = timeout

    @classmethod
    def from_config(cls, engine: Engine, config: MarathonConfig) -> FitbitClient:
        return cls(engine, timeout=float(config.client_timeout))

    async def get_steps(self, user_id: int, day: date) -> int:
        activity = await self.get_daily_activity(user_id, day)
        return activity.steps

    async def get_calories(self, user_id: int, day: date) -> int:
        activity = await self.get_daily_activity(user_id, day)
        return activity.calories

    async def get_daily_activity(self, user_id: int, day: date) -> DailyActivity:
        loop = asyncio.get_running_loop()
        access_token = await loop.run_in_executor(
            None, self._load_access_token, user_id
        )
        return await self._call_daily_activity(access_token, day)

    def _load_access_token(self, user_id: int) -> str:
        with get_session(self._engine) as db:
            access_token, _ = get_tokens(db, user_id, self.name)
        return access_token

    async def _call_daily_activity(self, access_token: str, day: date) -> DailyActivity:
        """Request one day of activity.

        Raises on HTTP errors and on an ``errors`` list in the body.
        """
        url = f"{DAILY_ACTIVITY_URL}/{day.isoformat()}.json"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.get(url, headers=headers)

        try:
            data = resp.json()
        except ValueError:
            resp.raise_for_status()
            raise

        errors = data.get("errors") or []
        if errors:
            for i, error in enumerate(errors):
                logger.error(
                    "Request to fitbit api failed - reason %d: %s (%s)",
                    i,
                    error.get("message", ""),
                    error.get("errorType", ""),
                )
            raise FitbitApiError("failed to request daily activity")
        resp.raise_for_status()

        return self._parse_activity(data)

    @staticmethod
    def _parse_activity(data: dict) -> DailyActivity:
        summary = data.get("summary", {})
        return DailyActivity(
            steps=int(summary.get("steps", 0)),
            calories=int(summary.get("caloriesOut", 0)),
        )
