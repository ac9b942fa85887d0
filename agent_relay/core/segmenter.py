"""消息分片引擎：把任意长度的 Agent 输出切成符合平台长度限制的有序分片。

保证：
1. 每个分片 len(text) <= max_len；
2. 去掉引擎补上的围栏标记后，按序拼接所有分片即为原文（不 strip、不丢字符）；
3. 长度不超过 max_len 的 ``` 代码块不会被拆到两个分片里。

自然边界优先级：换行 > 空格 > 定长硬切；切分字符留在前一段末尾。
超长代码块按行拆开，每个续段开头补 ```lang，非末段结尾补 ```。
"""

from __future__ import annotations

import logging
import re

from agent_relay.core.errors import SegmentationOverflow
from agent_relay.models.protocol import MessageChunk

logger = logging.getLogger(__name__)

FENCE = "```"

# 非贪婪匹配成对的 ```，可带语言标记
_CODE_BLOCK = re.compile(r"```.*?```", re.DOTALL)
_FENCE_HEAD = re.compile(r"```[^\n`]*\n")

# 缓冲区达到预算的 90% 就提前发出
EARLY_FLUSH_RATIO = 0.9
NEWLINE_MIN_FILL = 0.5


class PlatformLimits:
    """聊天平台的硬性长度上限（字符数）。"""

    CONTENT = 2000            # 普通消息正文
    EMBED_DESCRIPTION = 4096  # 富文本块描述
    EMBED_TITLE = 256         # 富文本块标题
    EMBED_FIELD_VALUE = 1024  # 富文本块单个字段
    EMBED_FOOTER = 2048       # 富文本块页脚
    TOTAL_MESSAGE = 6000      # 单条消息富文本总量


def segment(
    text: str,
    max_len: int = PlatformLimits.CONTENT,
    preserve_code: bool = True,
) -> list[MessageChunk]:
    """把 text 切成有序分片；max_len <= 0 时抛 SegmentationOverflow。空文本返回空列表。"""
    if max_len <= 0:
        raise SegmentationOverflow(f"max_len must be positive, got {max_len}")
    if not text:
        return []

    if len(text) <= max_len:
        chunks = [MessageChunk(text=text, is_fenced_code=bool(_CODE_BLOCK.search(text)))]
    elif preserve_code:
        chunks = _segment_preserving_code(text, max_len)
    else:
        chunks = [MessageChunk(text=piece) for piece in split_natural(text, max_len)]

    chunks = _absorb_blank_chunks(chunks, max_len)
    chunks = [c for c in chunks if c.text]
    for i, chunk in enumerate(chunks):
        chunk.index = i
        chunk.total = len(chunks)

    if len(chunks) > 1:
        logger.debug(
            "[DELIVERY] segment: text_len=%d max_len=%d preserve_code=%s -> %d chunks",
            len(text), max_len, preserve_code, len(chunks),
        )
    return chunks


def split_text(text: str, max_len: int = PlatformLimits.CONTENT, preserve_code: bool = True) -> list[str]:
    """segment 的便捷版本，只返回分片文本。"""
    return [chunk.text for chunk in segment(text, max_len, preserve_code)]


def split_natural(
    text: str,
    max_len: int,
    first_budget: int | None = None,
    use_spaces: bool = True,
) -> list[str]:
    """按自然边界切分纯文本，拼接结果等于原文。

    first_budget 用于首段只剩部分预算的情况（拼到已有缓冲区后面）；
    若首段预算内找不到自然边界，首段返回空串，表示调用方应先发出缓冲区。
    其余各段预算均为 max_len。
    """
    if max_len <= 0:
        raise SegmentationOverflow(f"max_len must be positive, got {max_len}")

    budget = max_len if first_budget is None else max(0, min(first_budget, max_len))
    pieces: list[str] = []
    start = 0
    while len(text) - start > budget:
        cut = _find_cut(text, start, start + budget, use_spaces)
        if cut == start:
            if budget < max_len:
                pieces.append("")
                budget = max_len
                continue
            cut = start + budget
        pieces.append(text[start:cut])
        start = cut
        budget = max_len
    pieces.append(text[start:])
    return pieces


def _find_cut(text: str, start: int, limit: int, use_spaces: bool) -> int:
    """在 [start, limit) 内找最靠后的自然切点，返回切点下标；找不到返回 start。"""
    newline = text.rfind("\n", start, limit)
    space = text.rfind(" ", start, limit) if use_spaces else -1
    # 换行太靠前时（本段不足一半），改用更靠后的空格
    if space > newline and newline < start + (limit - start) * NEWLINE_MIN_FILL:
        return space + 1
    if newline >= start:
        return newline + 1
    if space >= start:
        return space + 1
    return start


class _ChunkBuffer:
    """遍历片段时累积当前分片。"""

    def __init__(self, max_len: int):
        self.max_len = max_len
        self.text = ""
        self.has_code = False
        self.chunks: list[MessageChunk] = []

    @property
    def remaining(self) -> int:
        return self.max_len - len(self.text)

    def add(self, piece: str, code: bool = False) -> None:
        self.text += piece
        self.has_code = self.has_code or code

    def flush(self) -> None:
        if self.text:
            self.chunks.append(MessageChunk(text=self.text, is_fenced_code=self.has_code))
        self.text = ""
        self.has_code = False

    def emit(self, chunk: MessageChunk) -> None:
        self.chunks.append(chunk)


def _partition(text: str) -> list[tuple[str, str]]:
    """把文本切成按原顺序交替的 ("plain", ...) / ("code", ...) 片段。"""
    parts: list[tuple[str, str]] = []
    last = 0
    for match in _CODE_BLOCK.finditer(text):
        if match.start() > last:
            parts.append(("plain", text[last:match.start()]))
        parts.append(("code", match.group(0)))
        last = match.end()
    if last < len(text):
        parts.append(("plain", text[last:]))
    return parts


def _segment_preserving_code(text: str, max_len: int) -> list[MessageChunk]:
    buf = _ChunkBuffer(max_len)

    for kind, content in _partition(text):
        if kind == "plain":
            pieces = split_natural(content, max_len, first_budget=buf.remaining)
            buf.add(pieces[0])
            for piece in pieces[1:]:
                buf.flush()
                buf.add(piece)
        else:
            if len(buf.text) + len(content) > max_len:
                buf.flush()
            if len(content) > max_len:
                for chunk in _split_code_block(content, max_len):
                    buf.emit(chunk)
            else:
                buf.add(content, code=True)

        if len(buf.text) >= max_len * EARLY_FLUSH_RATIO:
            buf.flush()

    buf.flush()
    return buf.chunks


def _split_code_block(block: str, max_len: int) -> list[MessageChunk]:
    """按行拆分超长代码块，每段各自成为一个分片，并补齐围栏标记。"""
    head_match = _FENCE_HEAD.match(block)
    close_marker = "\n" + FENCE
    head = head_match.group(0) if head_match else ""
    cap = max_len - len(head) - len(close_marker)

    if head_match is None or cap <= 0:
        # 没有可复用的开头标记，或预算装不下围栏：退化为普通文本切分
        logger.debug("[DELIVERY] code block cannot be re-fenced at max_len=%d, splitting as text", max_len)
        return [MessageChunk(text=piece) for piece in split_natural(block, max_len)]

    body = block[len(head):len(block) - len(FENCE)]
    bodies = split_natural(body, cap, use_spaces=False)

    chunks: list[MessageChunk] = []
    for i, piece in enumerate(bodies):
        first = i == 0
        last = i == len(bodies) - 1
        lead = "" if first else head
        if last:
            tail = ""
            text = head + piece + FENCE
        else:
            tail = FENCE if piece.endswith("\n") else close_marker
            text = head + piece + tail
        chunks.append(MessageChunk(text=text, is_fenced_code=True, lead_marker=lead, tail_marker=tail))
    return chunks


def _absorb_blank_chunks(chunks: list[MessageChunk], max_len: int) -> list[MessageChunk]:
    """平台不接受空白消息：把只含空白的分片并入相邻分片（放得下且不破坏围栏标记时）。"""
    merged = list(chunks)
    i = 0
    while i < len(merged):
        chunk = merged[i]
        if chunk.text.strip() or chunk.lead_marker or chunk.tail_marker:
            i += 1
            continue
        if i > 0:
            prev = merged[i - 1]
            if not prev.tail_marker and len(prev.text) + len(chunk.text) <= max_len:
                prev.text += chunk.text
                del merged[i]
                continue
        if i + 1 < len(merged):
            nxt = merged[i + 1]
            if not nxt.lead_marker and len(chunk.text) + len(nxt.text) <= max_len:
                nxt.text = chunk.text + nxt.text
                del merged[i]
                continue
        i += 1
    return merged
