"""
角色模块 - 身份到人设的解析，以及 roles.json 的管理。
"""

from gembot.roles.errors import (
    CannotDeleteDefaultRole,
    InvalidRoleProfile,
    RoleAlreadyExists,
    RoleConfigUnavailable,
    RoleError,
    RoleNotFound,
)
from gembot.roles.schema import RoleConfig, RoleProfile, SystemPrompt
from gembot.roles.service import RoleService

__all__ = [
    "CannotDeleteDefaultRole",
    "InvalidRoleProfile",
    "RoleAlreadyExists",
    "RoleConfig",
    "RoleConfigUnavailable",
    "RoleError",
    "RoleNotFound",
    "RoleProfile",
    "RoleService",
    "SystemPrompt",
]
