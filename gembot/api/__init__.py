"""
HTTP 接口层（FastAPI）。

- app.py    : 应用装配与生命周期
- deps.py   : API Key 认证与服务获取
- errors.py : 响应信封与异常 → 状态码映射
- routes/   : gemini / line / admin 三组路由
"""

from gembot.api.app import create_app

__all__ = ["create_app"]
