import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from plugin_gate.app_container import PluginRegistry
from plugin_gate.domain.registry import GroupRecord, NewGroup, PluginRecord

logger = logging.getLogger(__name__)


class PluginUpdateRequest(BaseModel):
    id: int
    name: Optional[str] = None
    enabled: Optional[bool] = None
    internal: Optional[bool] = None
    threshold: Optional[int] = None
    white_list_users: Optional[List[int]] = None
    black_list_users: Optional[List[int]] = None


class PluginRegisterRequest(BaseModel):
    name: str
    internal: bool = False


class GroupAddRequest(BaseModel):
    name: str
    group_id: int
    admins: List[int] = Field(default_factory=list)
    expired_at: str = ""
    plugins: List[int] = Field(default_factory=list)


class GroupUpdateRequest(BaseModel):
    id: int
    name: Optional[str] = None
    group_id: Optional[int] = None
    admins: Optional[List[int]] = None
    expired_at: Optional[str] = None
    plugins: Optional[List[int]] = None


class GroupDeleteRequest(BaseModel):
    id: int


class GroupRegisterRequest(BaseModel):
    name: str
    group_id: int
    expired_at: str = ""


def _plugin_to_dict(plugin: PluginRecord) -> Dict[str, Any]:
    return {
        "id": plugin.plugin_id,
        "name": plugin.name,
        "enabled": plugin.enabled,
        "internal": plugin.internal,
        "threshold": plugin.threshold,
        "white_list_users": list(plugin.white_list_users),
        "black_list_users": list(plugin.black_list_users),
    }


def _group_to_dict(group: GroupRecord) -> Dict[str, Any]:
    return {
        "id": group.group_id,
        "name": group.name,
        "group_id": group.external_id,
        "admins": list(group.admins),
        "expired_at": group.expired_at,
        "plugins": list(group.plugins),
    }


def _ok(data: Any) -> Dict[str, Any]:
    return {"code": 200, "data": data}


def _fail(exc: BaseException) -> Dict[str, Any]:
    return {"code": 500, "message": str(exc) or "Internal Server Error"}


async def _respond(action: str, work: Awaitable[Any]) -> Dict[str, Any]:
    try:
        return _ok(await work)
    except Exception as exc:
        logger.exception("Admin action %s failed: %s", action, exc)
        return _fail(exc)


def create_app(registry: PluginRegistry) -> FastAPI:
    app = FastAPI(title="Plugin Gate Control Center")
    admin = registry.admin

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        logger.warning("Rejected %s %s: %s", request.method, request.url.path, exc.errors())
        return JSONResponse(status_code=200, content={"code": 500, "message": "Invalid request body."})

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        version = await asyncio.to_thread(registry.store.schema_version)
        return {
            "status": "ok",
            "schema_version": version,
            "active_plugins": sorted(registry.tracker.active_names()),
        }

    @app.get("/api/plugins")
    async def api_plugins() -> Dict[str, Any]:
        async def _list() -> List[Dict[str, Any]]:
            return [_plugin_to_dict(p) for p in await admin.list_plugins()]

        return await _respond("plugins.list", _list())

    @app.post("/api/plugins/update")
    async def api_plugins_update(req: PluginUpdateRequest) -> Dict[str, Any]:
        fields = req.model_dump(exclude_unset=True, exclude={"id"})

        async def _update() -> str:
            result = await admin.update_plugin(req.id, fields)
            return result.value

        return await _respond("plugins.update", _update())

    @app.post("/api/plugins/register")
    async def api_plugins_register(req: PluginRegisterRequest) -> Dict[str, Any]:
        async def _register() -> Dict[str, Any]:
            await admin.register_plugin(req.name, internal=req.internal)
            return {"name": req.name, "active": registry.tracker.is_active(req.name)}

        return await _respond("plugins.register", _register())

    @app.post("/api/plugins/external/clear")
    async def api_plugins_external_clear() -> Dict[str, Any]:
        async def _clear() -> Dict[str, int]:
            return {"removed": admin.clear_external_plugins()}

        return await _respond("plugins.external.clear", _clear())

    @app.get("/api/groups")
    async def api_groups() -> Dict[str, Any]:
        async def _list() -> List[Dict[str, Any]]:
            return [_group_to_dict(g) for g in await admin.list_groups()]

        return await _respond("groups.list", _list())

    @app.post("/api/groups/add")
    async def api_groups_add(req: GroupAddRequest) -> Dict[str, Any]:
        group = NewGroup(
            name=req.name,
            external_id=req.group_id,
            admins=list(req.admins),
            expired_at=req.expired_at,
            plugins=list(req.plugins),
        )
        return await _respond("groups.add", admin.add_group(group))

    @app.post("/api/groups/update")
    async def api_groups_update(req: GroupUpdateRequest) -> Dict[str, Any]:
        fields = req.model_dump(exclude_unset=True, exclude={"id"})
        if "group_id" in fields:
            fields["external_id"] = fields.pop("group_id")

        async def _update() -> str:
            result = await admin.update_group(req.id, fields)
            return result.value

        return await _respond("groups.update", _update())

    @app.post("/api/groups/delete")
    async def api_groups_delete(req: GroupDeleteRequest) -> Dict[str, Any]:
        return await _respond("groups.delete", admin.delete_group(req.id))

    @app.post("/api/groups/register")
    async def api_groups_register(req: GroupRegisterRequest) -> Dict[str, Any]:
        async def _register() -> Dict[str, Any]:
            created = await admin.register_group(req.name, req.group_id, req.expired_at)
            return {"group_id": req.group_id, "created": created}

        return await _respond("groups.register", _register())

    @app.get("/api/groups/{external_id}/plugins")
    async def api_group_plugins(external_id: int, user_id: Optional[int] = None) -> Dict[str, Any]:
        return await _respond(
            "groups.plugins",
            registry.resolver.get_available_plugins(external_id, user_id=user_id),
        )

    return app
