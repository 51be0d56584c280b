"""
角色配置数据模型 (roles/schema.py)
================================
定义 roles.json 的结构：角色表 + 三张身份映射表 + 默认角色。

文件示例（camelCase，与管理后台直接编辑的格式一致）：

    {
      "roles": {
        "customer-service": {
          "name": "客服助理",
          "description": "預設客服助理",
          "systemPrompt": {"user": "你是一個專業的客服助理。", "model": "好的，我會協助客戶。"},
          "geminiModel": "gemini-2.0-flash-exp",
          "stickerReplyText": "謝謝您！"
        }
      },
      "userRoleMapping": {"U123...": "customer-service"},
      "groupRoleMapping": {},
      "botRoleMapping": {},
      "defaultRole": "customer-service"
    }

注意：这里不能复用 config/loader.py 的 convert_keys()，
因为映射表的键是 LINE 的用户 / 群组 / bot ID（如 "U4af49806..."），
递归转换会把它们改写成小写蛇形。改用 Pydantic 的 alias_generator，
只作用于字段名，不碰字典键。

读取宽松（RoleConfig.from_document：缺字段或字段类型错误时只丢弃该字段，
整条角色无法解析时只丢弃该角色），写入严格（validate_for_write）。
"""

import copy
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel, to_snake

from gembot.roles.errors import InvalidRoleProfile

DEFAULT_ROLE_ID = "customer-service"
DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-exp"
DEFAULT_STICKER_REPLY = "謝謝您！"


class _CamelModel(BaseModel):
    """字段名在 JSON 中使用 camelCase 的基类。"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SystemPrompt(_CamelModel):
    """
    人设种子对话。

    新会话的前两条消息：先以 user 身份发送 user 文本，
    再以 assistant 身份"回答" model 文本，以此确立人设。
    """
    user: str = ""
    model: str = ""


class RoleProfile(_CamelModel):
    """
    角色（行为配置）。

    属性:
        role_id: 角色 ID（只在返回给调用方时填充，不写进文件里的角色条目）
        name / description: 人类可读的名称和描述
        system_prompt: 人设种子对话
        gemini_model: 该角色使用的 Gemini 模型
        sticker_reply_text: 收到贴图时的固定回复
    """
    # 允许管理后台在角色条目里附带额外字段，读写时原样保留
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    role_id: str | None = None
    name: str = ""
    description: str = ""
    system_prompt: SystemPrompt = Field(default_factory=SystemPrompt)
    gemini_model: str = DEFAULT_GEMINI_MODEL
    sticker_reply_text: str = DEFAULT_STICKER_REPLY

    def validate_for_write(self, role_id: str) -> None:
        """
        写入前的严格校验。

        异常:
            InvalidRoleProfile: 缺少必填字段
        """
        problems = []
        if not role_id or any(ch.isspace() for ch in role_id):
            problems.append("roleId must be a non-empty string without whitespace")
        if not self.name.strip():
            problems.append("name is required")
        if not self.system_prompt.user.strip():
            problems.append("systemPrompt.user is required")
        if not self.system_prompt.model.strip():
            problems.append("systemPrompt.model is required")
        if not self.gemini_model.strip():
            problems.append("geminiModel is required")
        if problems:
            raise InvalidRoleProfile(role_id, problems)

    def seed_messages(self) -> list[dict[str, str]]:
        """人设种子对话转换为会话消息格式。"""
        return [
            {"role": "user", "content": self.system_prompt.user},
            {"role": "assistant", "content": self.system_prompt.model},
        ]

    def to_dict(self) -> dict[str, Any]:
        """API 响应格式（camelCase，含 roleId）。"""
        return self.model_dump(by_alias=True)


def default_role_profile() -> RoleProfile:
    """内置默认角色（配置文件缺失或损坏时使用）。"""
    return RoleProfile(
        name="客服助理",
        description="預設客服助理",
        system_prompt=SystemPrompt(
            user="你是一個專業的客服助理。",
            model="好的，我會協助客戶。",
        ),
        gemini_model=DEFAULT_GEMINI_MODEL,
        sticker_reply_text=DEFAULT_STICKER_REPLY,
    )


_MAPPING_FIELDS = ("user_role_mapping", "group_role_mapping", "bot_role_mapping")

# 单个角色条目最多修复几轮（每轮删掉本轮校验报错的字段）
_MAX_REPAIR_PASSES = 5


def _present_key(container: dict[str, Any], key: Any) -> str | None:
    """在字典里找到 key 实际使用的写法（camelCase 或 snake_case）。"""
    if not isinstance(key, str):
        return None
    for candidate in (key, to_camel(key), to_snake(key)):
        if candidate in container:
            return candidate
    return None


def _drop_invalid_fields(entry: dict[str, Any], errors: list[Any]) -> bool:
    """
    按校验错误的 loc 删除出错的字段，让它们取默认值。

    嵌套字段（如 systemPrompt.user）只删叶子；父级本身不是对象时删父级。
    返回是否删掉了任何字段。
    """
    changed = False
    for err in errors:
        parent, loc = entry, list(err.get("loc", ()))
        while len(loc) > 1:
            key = _present_key(parent, loc[0])
            if key is None or not isinstance(parent[key], dict):
                break
            parent, loc = parent[key], loc[1:]

        key = _present_key(parent, loc[0]) if loc else None
        if key is not None:
            del parent[key]
            changed = True
    return changed


def _parse_role(role_id: str, entry: Any) -> RoleProfile | None:
    """宽松解析一个角色条目；无法修复时返回 None。"""
    if not isinstance(entry, dict):
        logger.warning(f"Role {role_id} is not an object, skipped")
        return None

    entry = copy.deepcopy(entry)
    for _ in range(_MAX_REPAIR_PASSES):
        try:
            return RoleProfile.model_validate(entry)
        except ValidationError as e:
            errors = e.errors()
            fields = [".".join(str(p) for p in err.get("loc", ())) for err in errors]
            if not _drop_invalid_fields(entry, errors):
                break
            logger.warning(f"Role {role_id}: invalid fields {fields} replaced with defaults")

    logger.warning(f"Role {role_id} could not be parsed, skipped")
    return None


def _parse_mapping(name: str, table: Any) -> dict[str, str]:
    """宽松解析一张映射表：值不是非空字符串的条目被跳过。"""
    if table is None:
        return {}
    if not isinstance(table, dict):
        logger.warning(f"{name} is not an object, ignored")
        return {}

    mapping = {}
    for key, role_id in table.items():
        if isinstance(role_id, str) and role_id:
            mapping[str(key)] = role_id
        else:
            logger.warning(f"{name}[{key}] has invalid role id {role_id!r}, skipped")
    return mapping


class RoleConfig(_CamelModel):
    """
    roles.json 的完整文档。

    文档顶层的未知字段原样保留，写回时不丢失。
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    roles: dict[str, RoleProfile] = Field(default_factory=dict)
    user_role_mapping: dict[str, str] = Field(default_factory=dict)
    group_role_mapping: dict[str, str] = Field(default_factory=dict)
    bot_role_mapping: dict[str, str] = Field(default_factory=dict)
    default_role: str = DEFAULT_ROLE_ID

    @classmethod
    def default(cls) -> "RoleConfig":
        """只含一个默认客服角色的初始文档。"""
        return cls(roles={DEFAULT_ROLE_ID: default_role_profile()})

    @classmethod
    def from_document(cls, data: dict[str, Any]) -> "RoleConfig":
        """
        宽松地解析 roles.json 文档。

        每个角色条目、每张映射表单独校验：坏字段取默认值，
        修不好的条目被跳过，并记录警告。其余条目原样保留，
        下一次写回不会把操作员的配置冲掉。
        """
        def field(name: str) -> Any:
            return data.get(to_camel(name), data.get(name))

        raw_roles = field("roles")
        if raw_roles is None:
            raw_roles = {}
        elif not isinstance(raw_roles, dict):
            logger.warning("roles is not an object, ignored")
            raw_roles = {}

        roles = {}
        for role_id, entry in raw_roles.items():
            profile = _parse_role(role_id, entry)
            if profile is not None:
                roles[role_id] = profile

        default_role = field("default_role")
        if not isinstance(default_role, str) or not default_role:
            if default_role is not None:
                logger.warning(f"defaultRole {default_role!r} is invalid, using {DEFAULT_ROLE_ID}")
            default_role = DEFAULT_ROLE_ID

        known = {key for name in cls.model_fields for key in (name, to_camel(name))}
        extras = {key: value for key, value in data.items() if key not in known}

        return cls(
            roles=roles,
            default_role=default_role,
            **{name: _parse_mapping(to_camel(name), field(name)) for name in _MAPPING_FIELDS},
            **extras,
        )

    def to_document(self) -> dict[str, Any]:
        """
        序列化为写入文件的 JSON 文档。

        角色条目里不写 roleId（键本身就是 ID）。顶层未知字段排在最前面。
        """
        return {
            **(self.model_extra or {}),
            "roles": {
                role_id: profile.model_dump(by_alias=True, exclude={"role_id"})
                for role_id, profile in self.roles.items()
            },
            "userRoleMapping": dict(self.user_role_mapping),
            "groupRoleMapping": dict(self.group_role_mapping),
            "botRoleMapping": dict(self.bot_role_mapping),
            "defaultRole": self.default_role,
        }
