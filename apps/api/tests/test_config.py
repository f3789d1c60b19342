import pytest
from pydantic import ValidationError

from core.config import Settings


def test_short_secret_key_is_rejected_at_startup():
    with pytest.raises(ValidationError) as exc:
        Settings(SECRET_KEY="too-short")

    assert "SECRET_KEY" in str(exc.value)


def test_secret_key_of_32_chars_is_accepted():
    assert Settings(SECRET_KEY="x" * 32).SECRET_KEY == "x" * 32
