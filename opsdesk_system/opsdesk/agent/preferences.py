"""
Persists operator preferences across sessions.
What it does:
- Loads the preference blob once at startup (defaults when missing or corrupt)
- Exposes a read-only snapshot
- Applies atomic updates (selection, lock flags, bulk replace) and persists after each one
- Generates tracking-container names from the naming template

And, the main purpose:
Single source of truth for scope / tracking-container context.
"""


import asyncio
from datetime import datetime, timezone
from typing import Optional, Protocol

from pydantic import BaseModel, Field, ValidationError

from opsdesk.agent.models import Selection
from opsdesk.core.config import settings
from opsdesk.core.errors import PersistenceError
from opsdesk.core.logging import get_logger

log = get_logger("agent.preferences")

DEFAULT_NAMING_TEMPLATE = "{prefix}_{date}_{description}"


class TrackingContainerPrefs(BaseModel):
    enabled: bool = True
    locked: bool = False
    current: Optional[Selection] = None
    prefix: str = "OPSD"
    naming_template: str = DEFAULT_NAMING_TEMPLATE


class ExecutionScopePrefs(BaseModel):
    enabled: bool = True
    locked: bool = False
    current: Optional[Selection] = None


class Preferences(BaseModel):
    tracking_container: TrackingContainerPrefs = Field(default_factory=TrackingContainerPrefs)
    execution_scope: ExecutionScopePrefs = Field(default_factory=ExecutionScopePrefs)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def put(self, key: str, value: str) -> None: ...


class PreferenceStore:
    def __init__(self, kv: KeyValueStore, key: str | None = None):
        self.kv = kv
        self.key = key or settings.PREFERENCES_KEY
        self._prefs = Preferences()
        self._lock = asyncio.Lock()

    async def load(self) -> Preferences:
        try:
            raw = await self.kv.get(self.key)
        except PersistenceError as e:
            log.warning(f"Failed to read preferences, using defaults: {e}")
            raw = None

        if raw:
            try:
                # missing fields fall back to model defaults
                self._prefs = Preferences.model_validate_json(raw)
            except ValidationError as e:
                log.warning(f"Stored preferences are corrupt, using defaults: {e.error_count()} error(s)")
                self._prefs = Preferences()
        else:
            self._prefs = Preferences()
        return self.snapshot()

    def snapshot(self) -> Preferences:
        return self._prefs.model_copy(deep=True)

    async def set_tracking_container(self, selection: Selection) -> Preferences:
        async with self._lock:
            self._prefs.tracking_container.current = selection
            return await self._persist()

    async def set_scope(self, selection: Selection) -> Preferences:
        async with self._lock:
            self._prefs.execution_scope.current = selection
            return await self._persist()

    async def lock_tracking_container(self, locked: bool) -> Preferences:
        async with self._lock:
            self._prefs.tracking_container.locked = locked
            return await self._persist()

    async def lock_scope(self, locked: bool) -> Preferences:
        async with self._lock:
            self._prefs.execution_scope.locked = locked
            return await self._persist()

    async def replace(self, prefs: Preferences) -> Preferences:
        async with self._lock:
            self._prefs = prefs.model_copy(deep=True)
            return await self._persist()

    def generate_container_name(self, description: str, today: datetime | None = None) -> str:
        tc = self._prefs.tracking_container
        date = (today or datetime.now(timezone.utc)).strftime("%Y%m%d")
        return (
            tc.naming_template.replace("{prefix}", tc.prefix)
            .replace("{date}", date)
            .replace("{description}", "_".join((description or "").split()))
        )

    async def _persist(self) -> Preferences:
        try:
            await self.kv.put(self.key, self._prefs.model_dump_json())
        except PersistenceError as e:
            # in-memory state stays authoritative for this run
            log.error(f"Failed to persist preferences: {e}")
        return self.snapshot()
