"""消息投递测试：纯文本分片、富文本分页与状态通知的长度上限。"""

from agent_relay.core import delivery
from agent_relay.core.segmenter import PlatformLimits


def test_content_messages():
    text = "line of text\n" * 400
    messages = delivery.content_messages(text)
    assert len(messages) == 3
    assert all(len(m.content) <= PlatformLimits.CONTENT for m in messages)
    assert "".join(m.content for m in messages) == text


def test_embed_pages_titles_and_budget():
    text = "word " * 2000
    pages = delivery.embed_pages(text, "🤖 Response", footer="Session session-1")
    embeds = [p.embeds[0] for p in pages]

    assert len(pages) == 3
    assert [e.title for e in embeds] == ["🤖 Response (1/3)", "🤖 Response (2/3)", "🤖 Response (3/3)"]
    for e in embeds:
        assert len(e.description) <= PlatformLimits.EMBED_DESCRIPTION
        assert len(e.title) + len(e.description) + len(e.footer) <= PlatformLimits.TOTAL_MESSAGE
    assert "".join(e.description for e in embeds) == text


def test_embed_single_page_has_plain_title():
    pages = delivery.embed_pages("short", "Title")
    assert len(pages) == 1
    assert pages[0].embeds[0].title == "Title"


def test_embed_pages_empty_text():
    assert delivery.embed_pages("", "Title") == []


def test_long_footer_shrinks_page_budget():
    footer = "f" * 2500
    pages = delivery.embed_pages("x" * 5000, "t" * 300, footer=footer)
    for page in pages:
        embed = page.embeds[0]
        assert len(embed.title) <= PlatformLimits.EMBED_TITLE
        assert len(embed.footer) <= PlatformLimits.EMBED_FOOTER
        assert len(embed.title) + len(embed.description) + len(embed.footer) <= PlatformLimits.TOTAL_MESSAGE


def test_truncate():
    assert delivery.truncate("abc", 5) == "abc"
    cut = delivery.truncate("a" * 50, 20)
    assert len(cut) == 20
    assert cut.endswith("(truncated)")
    assert delivery.truncate("abcdef", 3) == "abc"


def test_notice_limits():
    message = delivery.notice(
        "t" * 300,
        "d" * 5000,
        fields={"Workspace": "w" * 2000, "Model": "gemini-2.5-pro", "Empty": ""},
    )
    embed = message.embeds[0]
    assert len(embed.title) == PlatformLimits.EMBED_TITLE
    assert len(embed.description) == PlatformLimits.EMBED_DESCRIPTION
    fields = {f.name: f for f in embed.fields}
    assert len(fields["Workspace"].value) == PlatformLimits.EMBED_FIELD_VALUE
    assert not fields["Workspace"].inline
    assert fields["Model"].inline
    assert fields["Empty"].value == "-"


def test_error_notice_is_ephemeral():
    message = delivery.error_notice("Agent Not Found", "Agent `ghost` not found.")
    assert message.ephemeral
    assert message.embeds[0].title == "❌ Agent Not Found"
    assert message.embeds[0].color == delivery.Colors.ERROR
