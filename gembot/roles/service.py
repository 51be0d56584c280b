"""
角色服务实现模块 - 身份 → 角色的解析，以及角色 / 映射表的增删改查。

【解析优先级】
对于一条入站消息的身份三元组 (bot, 用户, 群组)：
  1. bot 映射（"这个官方账号永远是某个人设"）
  2. 用户映射（针对个人的定制）
  3. 群组映射（群内默认）
  4. 全局默认角色

【读穿透】
每个操作都会重新读取 roles.json，不做缓存。管理后台直接改写文件后，
下一条消息立刻生效，无需重启进程。请求量很低，这点 I/O 可以忽略。

【容错策略】
- 解析路径（resolve_role / get_role）：映射指向的角色已不存在时，
  退回默认角色并记录警告，从不向调用方抛错
- 增删改路径：严格校验，失败抛出 RoleError 子类
- 文件整体损坏时：读路径退回内置默认角色，增删改路径拒绝写入
  （抛出 RoleConfigUnavailable），操作员的文件保持原样

【Java 开发者类比】
- RoleService 类似于一个以 JSON 文件为数据源的 Repository + Service
- _load() / _save() 相当于每次都开一个新的只读事务 / 整体提交
"""

import json
import os
import tempfile
from pathlib import Path

from loguru import logger
from gembot.roles.errors import (
    CannotDeleteDefaultRole,
    RoleAlreadyExists,
    RoleConfigUnavailable,
    RoleNotFound,
)
from gembot.roles.schema import RoleConfig, RoleProfile, default_role_profile


class RoleService:
    """
    角色服务 - 以 roles.json 为唯一数据源。

    属性:
        config_path: 角色配置文件路径
    """

    def __init__(self, config_path: Path):
        self.config_path = config_path

    # ------------------------------------------------------------------
    # 持久化
    # ------------------------------------------------------------------

    def _load(self, for_write: bool = False) -> RoleConfig:
        """
        从磁盘读取角色配置。

        - 文件不存在：返回内置默认文档（写路径可以用它新建文件）
        - 个别条目有问题：由 RoleConfig.from_document 逐条跳过或取默认值
        - 整个文件无法读取或不是 JSON 对象：读路径记录错误并返回默认文档，
          写路径抛出 RoleConfigUnavailable，不覆盖原文件

        参数:
            for_write: 调用方读取后是否要写回
        """
        if not self.config_path.exists():
            logger.debug(f"Role config {self.config_path} not found, using defaults")
            return RoleConfig.default()

        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError(f"top level is {type(data).__name__}, expected an object")
        except (ValueError, OSError) as e:
            if for_write:
                raise RoleConfigUnavailable(str(self.config_path), str(e)) from e
            logger.error(f"Error loading role config {self.config_path}: {e}")
            return RoleConfig.default()

        return RoleConfig.from_document(data)

    def _save(self, config: RoleConfig) -> None:
        """
        原子写入角色配置。

        先写同目录下的临时文件，再 os.replace 覆盖，
        任何时刻读者看到的都是完整的旧文件或完整的新文件。
        """
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps(config.to_document(), indent=2, ensure_ascii=False)

        fd, tmp_name = tempfile.mkstemp(
            dir=self.config_path.parent, prefix=f".{self.config_path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, self.config_path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def ensure_config(self) -> bool:
        """配置文件不存在时写入默认文档。返回是否新建了文件。"""
        if self.config_path.exists():
            return False
        self._save(RoleConfig.default())
        logger.info(f"Created default role config at {self.config_path}")
        return True

    # ------------------------------------------------------------------
    # 解析
    # ------------------------------------------------------------------

    @staticmethod
    def _profile(config: RoleConfig, role_id: str) -> RoleProfile:
        """按 ID 取角色（带 role_id）；不存在时退回默认角色。"""
        profile = config.roles.get(role_id)
        if profile is None:
            logger.warning(f"Role {role_id} not found, using default role")
            role_id = config.default_role
            profile = config.roles.get(role_id)

        if profile is None:
            # 默认角色本身也被手工删掉了：用内置角色兜底，保证解析永不失败
            logger.error(f"Default role {role_id} missing from role config, using built-in role")
            profile = default_role_profile()

        return profile.model_copy(update={"role_id": role_id}, deep=True)

    def resolve_role(
        self,
        user_id: str,
        group_id: str | None = None,
        bot_id: str | None = None,
    ) -> RoleProfile:
        """
        解析一个身份应使用的角色。

        优先级：bot 映射 > 用户映射 > 群组映射 > 默认角色

        参数:
            user_id: LINE 用户 ID
            group_id: LINE 群组 / 聊天室 ID（可选）
            bot_id: bot 的 destination ID（可选）

        返回:
            带 role_id 的角色配置
        """
        config = self._load()

        if bot_id and config.bot_role_mapping.get(bot_id):
            role_id = config.bot_role_mapping[bot_id]
        elif user_id and config.user_role_mapping.get(user_id):
            role_id = config.user_role_mapping[user_id]
        elif group_id and config.group_role_mapping.get(group_id):
            role_id = config.group_role_mapping[group_id]
        else:
            role_id = config.default_role

        return self._profile(config, role_id)

    def get_role(self, role_id: str) -> RoleProfile:
        """按 ID 获取角色；未知 ID 退回默认角色（记录警告）。"""
        return self._profile(self._load(), role_id)

    def list_roles(self) -> list[RoleProfile]:
        """列出所有角色。"""
        config = self._load()
        return [
            profile.model_copy(update={"role_id": role_id}, deep=True)
            for role_id, profile in config.roles.items()
        ]

    def role_exists(self, role_id: str) -> bool:
        return role_id in self._load().roles

    # ------------------------------------------------------------------
    # 角色增删改
    # ------------------------------------------------------------------

    def create_role(self, role_id: str, profile: RoleProfile) -> RoleProfile:
        """
        创建角色。

        异常:
            RoleAlreadyExists: ID 已存在
            InvalidRoleProfile: 角色定义缺少必填字段
        """
        config = self._load(for_write=True)
        if role_id in config.roles:
            raise RoleAlreadyExists(role_id)

        profile.validate_for_write(role_id)
        config.roles[role_id] = profile.model_copy(update={"role_id": None})
        self._save(config)
        logger.info(f"Role {role_id} created")
        return profile.model_copy(update={"role_id": role_id})

    def update_role(self, role_id: str, profile: RoleProfile) -> RoleProfile:
        """
        整体替换角色定义。

        异常:
            RoleNotFound: 角色不存在
            InvalidRoleProfile: 角色定义缺少必填字段
        """
        config = self._load(for_write=True)
        if role_id not in config.roles:
            raise RoleNotFound(role_id)

        profile.validate_for_write(role_id)
        config.roles[role_id] = profile.model_copy(update={"role_id": None})
        self._save(config)
        logger.info(f"Role {role_id} updated")
        return profile.model_copy(update={"role_id": role_id})

    def delete_role(self, role_id: str) -> None:
        """
        删除角色，并清除所有指向它的用户 / 群组 / bot 映射。

        异常:
            CannotDeleteDefaultRole: 试图删除默认角色
            RoleNotFound: 角色不存在
        """
        config = self._load(for_write=True)
        if role_id == config.default_role:
            raise CannotDeleteDefaultRole(role_id)
        if role_id not in config.roles:
            raise RoleNotFound(role_id)

        del config.roles[role_id]

        purged = 0
        for mapping in (config.user_role_mapping, config.group_role_mapping, config.bot_role_mapping):
            stale = [key for key, mapped in mapping.items() if mapped == role_id]
            for key in stale:
                del mapping[key]
            purged += len(stale)

        self._save(config)
        logger.info(f"Role {role_id} deleted ({purged} mappings removed)")

    # ------------------------------------------------------------------
    # 映射表
    # ------------------------------------------------------------------

    def _set_mapping(self, table: str, key: str, role_id: str) -> None:
        config = self._load(for_write=True)
        if role_id not in config.roles:
            raise RoleNotFound(role_id)
        getattr(config, table)[key] = role_id
        self._save(config)
        logger.info(f"{table}[{key}] = {role_id}")

    def _remove_mapping(self, table: str, key: str) -> bool:
        config = self._load(for_write=True)
        mapping = getattr(config, table)
        if not mapping.get(key):
            return False
        del mapping[key]
        self._save(config)
        logger.info(f"{table}[{key}] removed")
        return True

    def set_user_role(self, user_id: str, role_id: str) -> None:
        """为用户指定角色。角色不存在时抛出 RoleNotFound。"""
        self._set_mapping("user_role_mapping", user_id, role_id)

    def remove_user_role(self, user_id: str) -> bool:
        """移除用户的角色指定。返回是否真的移除了。"""
        return self._remove_mapping("user_role_mapping", user_id)

    def set_group_role(self, group_id: str, role_id: str) -> None:
        """为群组指定角色。角色不存在时抛出 RoleNotFound。"""
        self._set_mapping("group_role_mapping", group_id, role_id)

    def remove_group_role(self, group_id: str) -> bool:
        return self._remove_mapping("group_role_mapping", group_id)

    def set_bot_role(self, bot_id: str, role_id: str) -> None:
        """为 bot（官方账号）指定角色。角色不存在时抛出 RoleNotFound。"""
        self._set_mapping("bot_role_mapping", bot_id, role_id)

    def remove_bot_role(self, bot_id: str) -> bool:
        return self._remove_mapping("bot_role_mapping", bot_id)

    def get_user_role_mappings(self) -> dict[str, str]:
        return dict(self._load().user_role_mapping)

    def get_group_role_mappings(self) -> dict[str, str]:
        return dict(self._load().group_role_mapping)

    def get_bot_role_mappings(self) -> dict[str, str]:
        return dict(self._load().bot_role_mapping)

    # ------------------------------------------------------------------
    # 默认角色
    # ------------------------------------------------------------------

    def get_default_role(self) -> str:
        return self._load().default_role

    def set_default_role(self, role_id: str) -> None:
        """
        设置默认角色。

        异常:
            RoleNotFound: 角色不存在
        """
        config = self._load(for_write=True)
        if role_id not in config.roles:
            raise RoleNotFound(role_id)
        config.default_role = role_id
        self._save(config)
        logger.info(f"Default role set to {role_id}")
