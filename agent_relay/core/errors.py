"""核心组件抛出的结构化错误。

核心组件不直接与用户交互，只抛出这些错误或返回兜底值，由路由层决定如何展示。
"""

from __future__ import annotations


class RelayError(Exception):
    """所有核心错误的基类。"""


class MalformedToken(RelayError, ValueError):
    """关联令牌无法解码：前缀不符或字段数不足。路由层应回复「选择已过期/无效」。"""

    def __init__(self, step: str, token: str, reason: str = ""):
        self.step = step
        self.token = token
        detail = f": {reason}" if reason else ""
        super().__init__(f"Malformed token for step {step!r}{detail} ({token[:100]!r})")


class UnknownAgent(RelayError, KeyError):
    """请求的 agent_id 不在静态 Agent 表中；不创建会话。"""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Agent not found: {agent_id}")

    def __str__(self) -> str:
        return self.args[0]


class CatalogUnavailable(RelayError):
    """在线模型目录拉取失败；只在目录层内部流转，最终降级为静态兜底列表。"""

    def __init__(self, provider: str, reason: str = ""):
        self.provider = provider
        super().__init__(f"Model catalog unavailable for {provider}: {reason}")


class SegmentationOverflow(RelayError, ValueError):
    """分片预算非法（max_len <= 0）。"""


class AccessDenied(RelayError):
    """高风险 Agent 只允许 owner 使用。"""

    def __init__(self, agent_id: str, user_id: str):
        self.agent_id = agent_id
        self.user_id = user_id
        super().__init__(f"User {user_id} may not start high-risk agent {agent_id}")
