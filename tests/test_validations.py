import pytest

from validations import (format_ethiopian_phone, password_strength, password_strength_label,
                         unmet_password_requirements, validate_email, validate_ethiopian_phone,
                         validate_name)


@pytest.mark.parametrize("email,ok", [
    ("abebe@example.com", True),
    ("  abebe@example.com ", True),
    ("abebe@example", False),
    ("abebe example.com", False),
    ("", False),
])
def test_validate_email(email, ok):
    assert validate_email(email) is ok


@pytest.mark.parametrize("phone,ok", [
    ("0912345678", True),
    ("+251912345678", True),
    ("0812345678", False),
    ("091234567", False),
    ("+25191234567", False),
])
def test_validate_ethiopian_phone(phone, ok):
    assert validate_ethiopian_phone(phone) is ok


def test_validate_name():
    assert validate_name("Abebe Kebede")
    assert not validate_name("A")
    assert not validate_name("R2D2")


def test_format_ethiopian_phone():
    assert format_ethiopian_phone("+251 912 345 678") == "0912345678"
    assert format_ethiopian_phone("912345678") == "0912345678"
    assert format_ethiopian_phone("09-1234-5678") == "0912345678"


def test_password_strength():
    assert password_strength("Abc123!x") == 100
    assert password_strength_label(password_strength("Abc123!x")) == "Strong"
    assert password_strength_label(password_strength("abc")) == "Weak"
    assert unmet_password_requirements("abcdefgh") == [
        "Includes number", "Includes uppercase letter", "Includes special symbol",
    ]
