"""
Scope / tracking-container context on the backend.
What it does:
- Lists available scopes (Global always offered) and tracking containers
- Creates a tracking container
- Pushes the current scope and tracking container before a gated chain runs

And, the main purpose:
Keep the backend's process-wide context in sync with the preference store.
Pushes are idempotent synchronization; the preference store stays authoritative.
Context tools missing from the catalog degrade to local-only behaviour.
"""


from typing import Any

from opsdesk.agent.models import Selection
from opsdesk.agent.resolver import extract_record_id
from opsdesk.backend.session import SessionManager
from opsdesk.core.config import settings
from opsdesk.core.errors import BackendError, ContextSyncError
from opsdesk.core.logging import get_logger
from opsdesk.llm.json_parse import extract_json

log = get_logger("backend.context")

GLOBAL_SCOPE = Selection(id="global", name="Global")


def _records(text: str) -> list[dict]:
    try:
        data: Any = extract_json(text)
    except ValueError:
        return []
    if isinstance(data, dict):
        for key in ("result", "records", "items", "data"):
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        return []
    return [r for r in data if isinstance(r, dict)]


def parse_selections(text: str) -> list[Selection]:
    out: list[Selection] = []
    for r in _records(text):
        rid = r.get("sys_id") or r.get("id") or r.get("scope")
        name = r.get("name") or rid
        if rid:
            out.append(Selection(id=str(rid), name=str(name)))
    return out


class PlatformContext:
    def __init__(
        self,
        session: SessionManager,
        *,
        scope_list_tool: str | None = None,
        scope_set_tool: str | None = None,
        container_list_tool: str | None = None,
        container_create_tool: str | None = None,
        container_set_tool: str | None = None,
    ):
        self.session = session
        self.scope_list_tool = scope_list_tool or settings.SCOPE_LIST_TOOL
        self.scope_set_tool = scope_set_tool or settings.SCOPE_SET_TOOL
        self.container_list_tool = container_list_tool or settings.CONTAINER_LIST_TOOL
        self.container_create_tool = container_create_tool or settings.CONTAINER_CREATE_TOOL
        self.container_set_tool = container_set_tool or settings.CONTAINER_SET_TOOL

    def _available(self, tool: str) -> bool:
        return tool in self.session.catalog

    async def _list(self, tool: str) -> list[Selection]:
        if not self._available(tool):
            return []
        try:
            result = await self.session.call_tool(tool, {})
        except BackendError as e:
            log.warning(f"{tool} failed: {e}")
            return []
        if result.is_error:
            log.warning(f"{tool} returned an error: {result.text[:200]}")
            return []
        return parse_selections(result.text)

    async def list_scopes(self) -> list[Selection]:
        scopes = await self._list(self.scope_list_tool)
        if not any(s.id == GLOBAL_SCOPE.id for s in scopes):
            scopes.insert(0, GLOBAL_SCOPE)
        return scopes

    async def list_tracking_containers(self) -> list[Selection]:
        return await self._list(self.container_list_tool)

    async def create_tracking_container(self, name: str, description: str) -> Selection:
        if not self._available(self.container_create_tool):
            log.warning(f"{self.container_create_tool} is not available; using '{name}' locally")
            return Selection(id=name, name=name)
        try:
            result = await self.session.call_tool(
                self.container_create_tool, {"name": name, "description": description}
            )
        except BackendError as e:
            raise ContextSyncError(f"Could not create tracking container '{name}': {e}") from e
        if result.is_error:
            raise ContextSyncError(f"Could not create tracking container '{name}': {result.text}")

        created = parse_selections(result.text)
        if created:
            return Selection(id=created[0].id, name=name)
        return Selection(id=extract_record_id(result.text) or name, name=name)

    async def push_scope(self, selection: Selection) -> None:
        await self._push(self.scope_set_tool, selection, "scope")

    async def push_tracking_container(self, selection: Selection) -> None:
        await self._push(self.container_set_tool, selection, "tracking container")

    async def _push(self, tool: str, selection: Selection, label: str) -> None:
        if not self._available(tool):
            log.info(f"{tool} is not available; {label} '{selection.name}' kept locally")
            return
        try:
            result = await self.session.call_tool(tool, {"id": selection.id, "name": selection.name})
        except BackendError as e:
            raise ContextSyncError(f"Could not set {label} to '{selection.name}': {e}") from e
        if result.is_error:
            raise ContextSyncError(f"Could not set {label} to '{selection.name}': {result.text}")
        log.info(f"Backend {label} set to {selection.name}")
