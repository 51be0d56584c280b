"""
角色服务异常定义。

所有异常都是调用方可以就地处理的业务错误，
HTTP 层（gembot/api/errors.py）负责把它们映射成状态码。
"""


class RoleError(Exception):
    """角色相关错误的基类。"""

    def __init__(self, role_id: str, message: str):
        self.role_id = role_id
        self.message = message
        super().__init__(message)


class RoleNotFound(RoleError):
    """角色不存在。"""

    def __init__(self, role_id: str):
        super().__init__(role_id, f"Role {role_id} not found")


class RoleAlreadyExists(RoleError):
    """创建角色时 ID 已被占用。"""

    def __init__(self, role_id: str):
        super().__init__(role_id, f"Role {role_id} already exists")


class CannotDeleteDefaultRole(RoleError):
    """默认角色不允许删除。"""

    def __init__(self, role_id: str):
        super().__init__(role_id, f"Cannot delete default role {role_id}")


class InvalidRoleProfile(RoleError):
    """写入的角色定义缺少必填字段。"""

    def __init__(self, role_id: str, problems: list[str]):
        self.problems = problems
        super().__init__(role_id, f"Invalid role {role_id}: {'; '.join(problems)}")


class RoleConfigUnavailable(Exception):
    """
    roles.json 存在但无法读取或解析。

    读路径此时退回内置默认角色；写路径抛出本异常，
    避免用默认文档覆盖操作员的文件。
    """

    def __init__(self, path: str, reason: str):
        self.path = path
        self.message = f"Role config {path} is unreadable ({reason}); fix the file before changing roles"
        super().__init__(self.message)
