"""Tests for keyword helpers and value encoding."""

from datetime import datetime

from recall.memory.codec import (
    decode_ids,
    decode_metadata,
    decode_value,
    encode_ids,
    encode_metadata,
    encode_value,
)
from recall.memory.text import (
    CODE_PATTERNS,
    TROUBLESHOOTING,
    classify,
    normalize_words,
    query_keywords,
    topic_words,
)


def test_normalize_words():
    assert normalize_words("Hello, World! It's fine.") == ["hello", "world", "its", "fine"]


def test_query_keywords_keep_order_and_repeats():
    assert query_keywords("How do I fix the Python import error in python?") == [
        "python",
        "import",
        "error",
        "python",
    ]


def test_topic_words_skip_stop_words():
    texts = ["Deploy the service today", "The service deploy failed", "please deploy"]
    assert topic_words(texts) == ["deploy", "service", "today", "failed"]


def test_topic_words_ties_keep_first_seen():
    assert topic_words(["zebra apple mango", "mango zebra"], limit=2) == ["zebra", "mango"]


def test_classify():
    assert classify("there is a bug in the function") == [TROUBLESHOOTING, CODE_PATTERNS]
    assert classify("the build crashes") == [TROUBLESHOOTING]
    assert classify("refactor this class") == [CODE_PATTERNS]
    assert classify("nice weather") == []


def test_value_encoding():
    assert decode_value(encode_value({"a": [1, None]})) == {"a": [1, None]}
    assert decode_value(encode_value("123")) == "123"
    assert decode_value("not json") == "not json"
    assert decode_value(None) is None

    when = datetime(2026, 1, 1, 8, 30)
    assert decode_value(encode_value({"at": when})) == {"at": "2026-01-01 08:30:00"}


def test_metadata_encoding():
    assert encode_metadata(None) is None
    assert encode_metadata("raw text") == "raw text"
    assert decode_metadata(encode_metadata({"k": 1})) == {"k": 1}
    assert decode_metadata("[1, 2]") == "[1, 2]"
    assert decode_metadata("{broken") == "{broken"
    assert decode_metadata("") is None


def test_id_list_encoding():
    assert decode_ids(encode_ids([3, 1])) == [3, 1]
    assert encode_ids(None) is None
    assert decode_ids("7") == "7"
    assert decode_ids("oops") == "oops"
