"""Tests for input sanitization."""

from budget_chat.sanitize import AMPERSAND_PLACEHOLDER, NEWLINE_PLACEHOLDER, sanitize_input


def test_plain_text_unchanged():
    assert sanitize_input("What is 2 + 2?") == "What is 2 + 2?"


def test_empty_and_blank():
    assert sanitize_input("") == ""
    assert sanitize_input("   \n\t ") == ""


def test_script_blocks_removed_with_content():
    assert sanitize_input("hi<script>alert('x')</script> there") == "hi there"
    assert sanitize_input("<STYLE type='text/css'>body{}</STYLE>ok") == "ok"


def test_tags_stripped_text_kept():
    assert sanitize_input("<b>bold</b> and <i>italic</i>") == "bold and italic"


def test_comparison_operators_survive():
    assert sanitize_input("if a < b && b > c") == "if a < b && b > c"


def test_newlines_preserved():
    assert sanitize_input("line one\nline two\n\nline four") == "line one\nline two\n\nline four"


def test_crlf_normalized():
    assert sanitize_input("a\r\nb\rc") == "a\nb\nc"


def test_multiline_script_removed():
    text = "before\n<script>\nvar x = 1;\n</script>\nafter"
    assert sanitize_input(text) == "before\n\nafter"


def test_placeholder_character_never_leaks():
    assert NEWLINE_PLACEHOLDER not in sanitize_input(f"a{NEWLINE_PLACEHOLDER}b")
    assert sanitize_input(f"a{NEWLINE_PLACEHOLDER}b") == "ab"


def test_markdown_untouched():
    text = "# Title\n\n```python\nprint('hi')\n```\n**bold** [link](http://x)"
    assert sanitize_input(text) == text


def test_typed_entities_stay_literal():
    text = "&lt;script&gt;alert(1)&lt;/script&gt;"
    result = sanitize_input(text)
    assert "<script" not in result
    assert result == text


def test_typed_ampersand_entity_unchanged():
    assert sanitize_input("write &amp; in HTML") == "write &amp; in HTML"


def test_unclosed_angle_bracket_survives():
    assert sanitize_input("if a<b then c") == "if a<b then c"


def test_tags_split_by_other_tags_do_not_reassemble():
    result = sanitize_input("<<b>script>alert(1)<</b>/script>")
    assert "<script" not in result.lower()


def test_ampersand_placeholder_never_leaks():
    assert sanitize_input(f"a{AMPERSAND_PLACEHOLDER}b & c") == "ab & c"
