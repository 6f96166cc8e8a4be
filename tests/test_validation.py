from datetime import datetime

import pytest

from app.redline.validation import (
    has_sql_injection,
    has_xss,
    is_reserved_route_word,
    float_field,
    parse_datetime,
    text_field,
    validate_file_upload,
    validate_id,
    validate_image_url,
    validate_invite_code,
    validate_location,
)


def test_xss_patterns():
    assert has_xss("<script>alert(1)</script>")
    assert has_xss('<img src=x onerror="x">')
    assert has_xss("javascript:void(0)")
    assert not has_xss("Sunday cars and coffee at 9")


def test_sql_injection_patterns():
    assert has_sql_injection("1 OR 1=1")
    assert has_sql_injection("x'; DROP TABLE users")
    assert not has_sql_injection("Austin")


@pytest.mark.parametrize(
    "value,ok",
    [("abc", True), ("a" * 36, True), ("ab", False), ("a" * 37, False), ("abc def", False), ("abc;", False), (None, False)],
)
def test_validate_id(value, ok):
    assert validate_id(value) is ok


def test_invite_code_format():
    assert validate_invite_code("A1B2C3D4")
    assert not validate_invite_code("a1b2c3d4")
    assert not validate_invite_code("A1B2C3D")
    assert not validate_invite_code("G1B2C3D4")


def test_location():
    assert validate_location("San Francisco, CA")
    assert validate_location("St. John's (Old Town)") is False  # quote trips the injection check
    assert not validate_location("x")
    assert not validate_location("Austin<script>")


def test_image_urls():
    assert validate_image_url("https://i.imgur.com/car.jpg")
    assert validate_image_url("https://bucket.s3.amazonaws.com/clubs/a.webp")
    assert validate_image_url("https://abc123.ufs.sh/f/key-without-extension")
    assert not validate_image_url("http://i.imgur.com/car.jpg")
    assert not validate_image_url("https://evil.example.com/car.jpg")
    assert not validate_image_url("https://i.imgur.com/car.exe")
    assert not validate_image_url("https://notimgur.com/car.jpg")


def test_file_upload_rules():
    assert validate_file_upload("car.png", "image/png", 1024) == []
    assert validate_file_upload("car.exe", "application/octet-stream")
    assert validate_file_upload("car.png", "image/jpeg")
    assert validate_file_upload("car.png", "image/png", 11 * 1024 * 1024)


def test_reserved_route_words():
    assert is_reserved_route_word("create")
    assert is_reserved_route_word(" Settings ")
    assert not is_reserved_route_word("drifters")


def test_parse_datetime_normalizes_to_naive_utc():
    assert parse_datetime("2030-01-01T12:00:00Z") == datetime(2030, 1, 1, 12, 0)
    assert parse_datetime("2030-01-01T14:00:00+02:00") == datetime(2030, 1, 1, 12, 0)
    assert parse_datetime("") is None
    with pytest.raises(ValueError):
        parse_datetime("next tuesday")


def test_text_field_collects_errors():
    errors: list[str] = []
    assert text_field({"name": "  Rally  "}, "name", errors, label="Name", min_len=1) == "Rally"
    assert errors == []
    text_field({}, "name", errors, label="Name", min_len=1)
    text_field({"name": 5}, "name", errors, label="Name")
    text_field({"name": "x" * 11}, "name", errors, label="Name", max_len=10)
    assert errors == ["Name is required.", "Name must be a string.", "Name must be at most 10 characters."]


@pytest.mark.parametrize(
    "value,expected",
    [
        (float("nan"), "x must be a finite number."),
        (float("inf"), "x must be a finite number."),
        ("3.5", "x must be a number."),
        (False, "x must be a number."),
    ],
)
def test_float_field_rejects_non_numbers(value, expected):
    errors: list[str] = []
    assert float_field({"x": value}, "x", errors) is None
    assert errors == [expected]


def test_float_field_bounds():
    errors: list[str] = []
    assert float_field({"x": 7}, "x", errors, lo=0, hi=10) == 7.0
    assert float_field({}, "x", errors) is None
    assert errors == []
    float_field({"x": 11.5}, "x", errors, lo=0, hi=10)
    assert errors == ["x is out of range."]
