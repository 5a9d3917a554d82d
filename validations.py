import re

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# 09XXXXXXXX or +2519XXXXXXXX
ETHIOPIAN_PHONE_RE = re.compile(r"^(?:(?:\+251|0)9\d{8})$")
NAME_RE = re.compile(r"^[A-Za-z\s]{2,}$")

PASSWORD_REQUIREMENTS = [
    (re.compile(r"[0-9]"), "Includes number"),
    (re.compile(r"[a-z]"), "Includes lowercase letter"),
    (re.compile(r"[A-Z]"), "Includes uppercase letter"),
    (re.compile(r"[$&+,:;=?@#|'<>.^*()%!-]"), "Includes special symbol"),
    (re.compile(r".{8,}"), "At least 8 characters"),
]

MIN_PASSWORD_LENGTH = 6


def validate_email(email: str) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email.strip()))


def validate_ethiopian_phone(phone: str) -> bool:
    return bool(phone) and bool(ETHIOPIAN_PHONE_RE.match(phone))


def validate_name(name: str) -> bool:
    return bool(name) and bool(NAME_RE.match(name))


def password_strength(password: str) -> float:
    """Score 0-100; every unmet requirement (and a short password) costs a step."""
    multiplier = 0 if len(password) > 5 else 1
    for pattern, _label in PASSWORD_REQUIREMENTS:
        if not pattern.search(password):
            multiplier += 1
    return max(100 - (100 / (len(PASSWORD_REQUIREMENTS) + 1)) * multiplier, 0)


def password_strength_label(strength: float) -> str:
    if strength >= 80:
        return "Strong"
    if strength >= 60:
        return "Good"
    if strength >= 40:
        return "Fair"
    return "Weak"


def unmet_password_requirements(password: str):
    return [label for pattern, label in PASSWORD_REQUIREMENTS if not pattern.search(password)]


def format_ethiopian_phone(phone: str) -> str:
    cleaned = re.sub(r"\D", "", phone or "")
    if cleaned.startswith("0"):
        return cleaned[:10]
    if cleaned.startswith("251"):
        return "0" + cleaned[3:13]
    if len(cleaned) == 9:
        return "0" + cleaned
    return cleaned
