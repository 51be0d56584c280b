"""
管理接口（/api/admin）- 角色、身份映射、默认角色与日志查看。

角色相关操作全部委托给 RoleService，写入立即落盘，下一条消息即生效。
日志接口只读取日志目录下的 *.log 文件，拒绝任何带路径成分的文件名。
"""

from datetime import datetime
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gembot.api.deps import get_config, get_roles, require_api_key
from gembot.api.errors import ok
from gembot.config.schema import Config
from gembot.roles.errors import RoleNotFound
from gembot.roles.schema import RoleProfile
from gembot.roles.service import RoleService
from gembot.utils.helpers import get_logs_path, is_safe_filename

router = APIRouter(dependencies=[Depends(require_api_key)])

MappingKind = Literal["users", "groups", "bots"]


class CreateRoleRequest(RoleProfile):
    role_id: str = Field(min_length=1)


class RoleRef(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    role_id: str = Field(min_length=1)


def _as_profile(body: RoleProfile) -> RoleProfile:
    """请求体转为纯 RoleProfile（去掉 roleId，保留额外字段）。"""
    return RoleProfile.model_validate(body.model_dump(exclude={"role_id"}))


# ----------------------------------------------------------------------
# 角色
# ----------------------------------------------------------------------


@router.get("/roles")
async def list_roles(roles: RoleService = Depends(get_roles)):
    return ok({
        "roles": [profile.to_dict() for profile in roles.list_roles()],
        "defaultRole": roles.get_default_role(),
    })


@router.get("/roles/{role_id}")
async def get_role(role_id: str, roles: RoleService = Depends(get_roles)):
    # 管理接口需要明确的 404，不走解析路径上的默认角色兜底
    if not roles.role_exists(role_id):
        raise RoleNotFound(role_id)
    return ok(roles.get_role(role_id).to_dict())


@router.post("/roles", status_code=201)
async def create_role(body: CreateRoleRequest, roles: RoleService = Depends(get_roles)):
    profile = roles.create_role(body.role_id, _as_profile(body))
    return ok(profile.to_dict(), "Role created")


@router.put("/roles/{role_id}")
async def update_role(role_id: str, body: RoleProfile, roles: RoleService = Depends(get_roles)):
    profile = roles.update_role(role_id, _as_profile(body))
    return ok(profile.to_dict(), "Role updated")


@router.delete("/roles/{role_id}")
async def delete_role(role_id: str, roles: RoleService = Depends(get_roles)):
    roles.delete_role(role_id)
    return ok({"deleted": True}, "Role deleted")


# ----------------------------------------------------------------------
# 身份映射
# ----------------------------------------------------------------------


@router.get("/mappings")
async def list_mappings(roles: RoleService = Depends(get_roles)):
    return ok({
        "users": roles.get_user_role_mappings(),
        "groups": roles.get_group_role_mappings(),
        "bots": roles.get_bot_role_mappings(),
    })


@router.put("/mappings/{kind}/{key}")
async def set_mapping(kind: MappingKind, key: str, body: RoleRef, roles: RoleService = Depends(get_roles)):
    setter = {
        "users": roles.set_user_role,
        "groups": roles.set_group_role,
        "bots": roles.set_bot_role,
    }[kind]
    setter(key, body.role_id)
    return ok({"kind": kind, "key": key, "roleId": body.role_id}, "Mapping saved")


@router.delete("/mappings/{kind}/{key}")
async def remove_mapping(kind: MappingKind, key: str, roles: RoleService = Depends(get_roles)):
    remover = {
        "users": roles.remove_user_role,
        "groups": roles.remove_group_role,
        "bots": roles.remove_bot_role,
    }[kind]
    if not remover(key):
        raise HTTPException(status_code=404, detail=f"No {kind} mapping for {key}")
    return ok({"removed": True}, "Mapping removed")


# ----------------------------------------------------------------------
# 默认角色
# ----------------------------------------------------------------------


@router.get("/default-role")
async def get_default_role(roles: RoleService = Depends(get_roles)):
    return ok({"roleId": roles.get_default_role()})


@router.put("/default-role")
async def set_default_role(body: RoleRef, roles: RoleService = Depends(get_roles)):
    roles.set_default_role(body.role_id)
    return ok({"roleId": body.role_id}, "Default role updated")


# ----------------------------------------------------------------------
# 日志
# ----------------------------------------------------------------------


def _log_dir(config: Config) -> Path:
    return get_logs_path(config.logging.dir)


@router.get("/logs")
async def list_logs(config: Config = Depends(get_config)):
    """列出日志文件，最近修改的排在前面。"""
    files = []
    for path in _log_dir(config).glob("*.log"):
        stat = path.stat()
        files.append({
            "name": path.name,
            "size": stat.st_size,
            "modified": datetime.fromtimestamp(stat.st_mtime).isoformat(),
            "isError": path.name.startswith("error-"),
            "_mtime": stat.st_mtime,
        })
    files.sort(key=lambda f: f["_mtime"], reverse=True)
    for f in files:
        del f["_mtime"]
    return ok({"files": files})


@router.get("/logs/{filename}")
async def read_log(
    filename: str,
    lines: int = Query(100, ge=1, le=5000),
    offset: int = Query(0, ge=0),
    config: Config = Depends(get_config),
):
    """
    读取日志文件末尾的若干行（最新的在前）。

    offset 表示从末尾跳过的行数，用于向前翻页。
    """
    if not is_safe_filename(filename) or not filename.endswith(".log"):
        logger.warning(f"Rejected log file request: {filename}")
        raise HTTPException(status_code=400, detail="Invalid filename")

    path = _log_dir(config) / filename
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Log file not found")

    all_lines = [line for line in path.read_text(encoding="utf-8", errors="replace").splitlines() if line.strip()]
    total = len(all_lines)
    end = max(0, total - offset)
    start = max(0, end - lines)

    return ok({
        "filename": filename,
        "totalLines": total,
        "offset": offset,
        "lines": list(reversed(all_lines[start:end])),
    })
