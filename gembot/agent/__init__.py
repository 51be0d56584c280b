"""
对话编排模块 - 角色解析、会话维护与 Gemini 调用的汇合点。

- ConversationService: 处理 LINE 消息与 REST 对话请求
- ChatResult: REST 对话接口的返回结构
"""

from gembot.agent.conversation import ChatResult, ConversationService

__all__ = ["ChatResult", "ConversationService"]
