"""消息分片引擎测试。"""

import pytest

from agent_relay.core.errors import SegmentationOverflow
from agent_relay.core.segmenter import PlatformLimits, segment, split_natural, split_text

SCENARIO_B = "plain\n```js\nconsole.log(1)\n```\nmore"


def _check_invariants(text, chunks, max_len):
    assert all(len(c.text) <= max_len for c in chunks)
    assert "".join(c.raw for c in chunks) == text
    assert [c.index for c in chunks] == list(range(len(chunks)))
    assert all(c.total == len(chunks) for c in chunks)


def test_hard_cut_without_boundaries():
    """没有任何自然边界时按定长硬切。"""
    chunks = segment("a" * 2500, 2000, preserve_code=False)
    assert [len(c.text) for c in chunks] == [2000, 500]
    _check_invariants("a" * 2500, chunks, 2000)


def test_oversized_code_block_is_refenced():
    """超长代码块按行拆开，每段重新打开 / 关闭围栏；前后的普通文本各自成段。"""
    chunks = segment(SCENARIO_B, 15)
    texts = [c.text for c in chunks]

    assert texts[0] == "plain\n"
    assert texts[-1] == "\nmore"
    middle = chunks[1:-1]
    assert len(middle) >= 2
    for chunk in middle:
        assert chunk.is_fenced_code
        assert chunk.text.startswith("```js\n")
        assert chunk.text.endswith("```")
    # 只有续段带补上的开头标记，只有非末段带补上的结尾标记
    assert middle[0].lead_marker == ""
    assert all(c.lead_marker == "```js\n" for c in middle[1:])
    assert middle[-1].tail_marker == ""
    assert all(c.tail_marker for c in middle[:-1])
    _check_invariants(SCENARIO_B, chunks, 15)


def test_short_text_is_single_chunk():
    chunks = segment("hello world", 2000)
    assert len(chunks) == 1
    assert chunks[0].text == "hello world"
    assert chunks[0].total == 1


def test_empty_text():
    assert segment("", 100) == []


@pytest.mark.parametrize("max_len", [0, -5])
def test_non_positive_budget_raises(max_len):
    with pytest.raises(SegmentationOverflow):
        segment("abc", max_len)
    with pytest.raises(ValueError):
        segment("abc", max_len)


def test_fitting_code_block_stays_whole():
    """长度不超过预算的代码块完整地落在一个分片里。"""
    block = "```py\nprint(1)\n```"
    text = "x" * 50 + "\n" + block + "\n" + "y" * 50
    chunks = segment(text, 40)
    assert sum(block in c.text for c in chunks) == 1
    assert not any("```py" in c.text and block not in c.text for c in chunks)
    _check_invariants(text, chunks, 40)


def test_prefers_newline_then_space():
    text = "first line here\nsecond line that is longer than the budget allows"
    pieces = split_natural(text, 20)
    assert pieces[0] == "first line here\n"
    # 第二行没有换行可切，退到空格，切分字符留在前一段
    assert pieces[1].endswith(" ")
    assert "".join(pieces) == text
    assert all(len(p) <= 20 for p in pieces)


def test_first_budget_without_boundary_yields_empty_head():
    """首段预算内没有自然边界时返回空的首段，提示调用方先发出缓冲区。"""
    pieces = split_natural("abcdefghij klm", 12, first_budget=3)
    assert pieces[0] == ""
    assert "".join(pieces) == "abcdefghij klm"


def test_nearly_full_buffer_is_flushed_early():
    """缓冲区填到九成后立即发出，后面的短代码块开新分片而不是挤在末尾。"""
    head = "a" * 91 + "\n"
    block = "```x```"
    tail = " " + "b" * 50
    text = head + block + tail
    chunks = segment(text, 100)
    assert [c.text for c in chunks] == [head, block + tail]
    assert chunks[1].text.startswith(block)
    _check_invariants(text, chunks, 100)


def test_whitespace_only_chunks_are_absorbed():
    """两个代码块之间只剩一个换行时，并入前一个分片而不是单独发一条空白消息。"""
    first = "```\n" + "x" * 11 + "\n```"
    second = "```\n" + "y" * 12 + "\n```"
    text = first + "\n" + second
    chunks = segment(text, 20)
    assert [c.text for c in chunks] == [first + "\n", second]
    _check_invariants(text, chunks, 20)


def test_late_space_beats_early_newline():
    text = "\n" + "outro " * 20
    chunks = segment(text, 120, preserve_code=False)
    assert len(chunks[0].text) > 100
    _check_invariants(text, chunks, 120)


@pytest.mark.parametrize(
    "text,max_len",
    [
        ("word " * 900, PlatformLimits.CONTENT),
        ("line\n" * 700 + "```\n" + "code();\n" * 400 + "```\ntail", PlatformLimits.CONTENT),
        ("intro\n```python\n" + "x = 1\n" * 50 + "```\n" + "outro " * 20, 120),
        ("```a```b```c``` and ```unterminated", 6),
        ("no fences but\n\n\nblank lines\n\n" * 30, 37),
    ],
)
def test_length_and_reconstruction_hold(text, max_len):
    chunks = segment(text, max_len)
    _check_invariants(text, chunks, max_len)


def test_split_text_returns_strings():
    assert split_text("a" * 30, 10, preserve_code=False) == ["a" * 10] * 3


def test_platform_limits():
    assert PlatformLimits.CONTENT == 2000
    assert PlatformLimits.EMBED_DESCRIPTION == 4096
    assert PlatformLimits.EMBED_TITLE == 256
    assert PlatformLimits.EMBED_FIELD_VALUE == 1024
    assert PlatformLimits.EMBED_FOOTER == 2048
    assert PlatformLimits.TOTAL_MESSAGE == 6000
