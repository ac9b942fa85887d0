"""消息投递：把分片结果包装成平台可直接发送的 OutboundMessage。

- 普通文本：每个分片一条消息，不超过 CONTENT 上限；
- 富文本分页：每页一个 embed，标题带 (i/n)，描述、标题、页脚各自不超过上限，
  且三者之和不超过单条消息的总量上限；
- 状态通知：路由层的成功 / 错误 / 提示回复。
"""

from __future__ import annotations

import logging
from datetime import datetime

from agent_relay.core.segmenter import PlatformLimits, segment
from agent_relay.models.protocol import Embed, EmbedField, MessageChunk, OutboundMessage

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n... (truncated)"


class Colors:
    SUCCESS = 0x00FF00
    ERROR = 0xFF0000
    WARNING = 0xFFAA00
    INFO = 0x5865F2
    RESPONSE = 0x0099FF


def truncate(text: str, limit: int, marker: str = TRUNCATION_MARKER) -> str:
    """超长时截断并附上标记，结果长度不超过 limit。"""
    if len(text) <= limit:
        return text
    if limit <= len(marker):
        return text[:limit]
    return text[:limit - len(marker)] + marker


def chunk_messages(chunks: list[MessageChunk]) -> list[OutboundMessage]:
    """已经切好的分片，每个一条纯文本消息。"""
    return [OutboundMessage(content=chunk.text) for chunk in chunks]


def content_messages(text: str, max_len: int = PlatformLimits.CONTENT) -> list[OutboundMessage]:
    """每个分片一条纯文本消息。"""
    return chunk_messages(segment(text, max_len))


def embed_pages(
    text: str,
    title: str,
    color: int = Colors.RESPONSE,
    footer: str = "",
) -> list[OutboundMessage]:
    """把长文本分页成若干 embed 消息，标题为 "title (i/n)"。"""
    # 先为 " (i/n)" 预留位置，页数未知时按三位数估算
    title = truncate(title, PlatformLimits.EMBED_TITLE - len(" (999/999)"), marker="…")
    footer = truncate(footer, PlatformLimits.EMBED_FOOTER, marker="…")
    page_title_max = len(title) + len(" (999/999)")
    budget = min(
        PlatformLimits.EMBED_DESCRIPTION,
        PlatformLimits.TOTAL_MESSAGE - page_title_max - len(footer),
    )

    chunks = segment(text, budget)
    if not chunks:
        return []

    now = datetime.now()
    pages = []
    for chunk in chunks:
        page_title = f"{title} ({chunk.index + 1}/{chunk.total})" if chunk.total > 1 else title
        pages.append(OutboundMessage(embeds=[Embed(
            title=page_title,
            description=chunk.text,
            color=color,
            footer=footer,
            timestamp=now,
        )]))
    logger.debug("[DELIVERY] embed_pages: title=%s pages=%d budget=%d", title, len(pages), budget)
    return pages


def notice(
    title: str,
    description: str = "",
    color: int = Colors.INFO,
    fields: dict[str, str] | None = None,
    footer: str = "",
    ephemeral: bool = False,
) -> OutboundMessage:
    """单条状态通知；各部分按平台上限截断。"""
    embed_fields = [
        EmbedField(
            name=truncate(name, PlatformLimits.EMBED_TITLE, marker="…"),
            value=truncate(value or "-", PlatformLimits.EMBED_FIELD_VALUE),
            inline=len(value or "") < 40,
        )
        for name, value in (fields or {}).items()
    ]
    return OutboundMessage(
        embeds=[Embed(
            title=truncate(title, PlatformLimits.EMBED_TITLE, marker="…"),
            description=truncate(description, PlatformLimits.EMBED_DESCRIPTION),
            color=color,
            fields=embed_fields,
            footer=truncate(footer, PlatformLimits.EMBED_FOOTER, marker="…"),
            timestamp=datetime.now(),
        )],
        ephemeral=ephemeral,
    )


def error_notice(title: str, description: str = "") -> OutboundMessage:
    return notice(f"❌ {title}", description, color=Colors.ERROR, ephemeral=True)
