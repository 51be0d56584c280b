"""
gembot - Gemini × LINE 对话网关

模块概述：
    本文件是 gembot 包的入口文件（__init__.py），定义了包的元信息。
    gembot 是一个轻量的 HTTP 网关：接收 REST / LINE Webhook 请求，
    转发给 Google Gemini（通过 LiteLLM 统一调用），再把回复投递回 LINE。

    整个项目的核心功能包括：
    - 会话存储（SessionStore）：内存中的短期对话历史，滑动窗口过期 + 后台清扫
    - 角色解析（RoleService）：根据 bot / 用户 / 群组决定使用哪个角色人设
    - 对话编排（ConversationService）：角色切换时开启新会话、注入人设种子对话
    - HTTP 接口（FastAPI）：Gemini REST API、LINE Webhook、角色管理 API
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo 表情符号，用于 CLI 输出等场景的品牌标识
__logo__ = "💎"
