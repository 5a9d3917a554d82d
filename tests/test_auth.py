import pytest

from auth import login, register_account, request_password_reset, reset_password
from errors import AuthenticationFailed, NotFound, ValidationFailed
from tests.conftest import auth_headers, register


def test_register_normalises_phone_numbers(db):
    profile = register_account(db, name="Abebe Kebede", email="abebe@example.com", password="secret123",
                               phone="+251 912 345 678")
    assert profile["phone"] == "0912345678"

    with pytest.raises(ValidationFailed):
        register_account(db, name="Almaz Tesfaye", email="almaz@example.com", password="secret123",
                         phone="12345")


def test_register_rejects_unknown_role(db):
    with pytest.raises(ValidationFailed) as exc:
        register_account(db, name="Abebe Kebede", email="abebe@example.com", password="secret123", role="admin")
    assert "role" in exc.value.detail
    assert db["userprofile"].count_documents({}) == 0


def test_password_reset_sends_mail_and_works_once(db):
    register_account(db, name="Abebe Kebede", email="abebe@example.com", password="secret123")

    token = request_password_reset(db, " Abebe@Example.com ")
    mail = db["mail"].find_one({"to": "abebe@example.com"})
    assert token in mail["text"]

    assert reset_password(db, token, "newsecret1")["message"].startswith("Your password has been updated")
    assert login(db, "abebe@example.com", "newsecret1")["access_token"]
    with pytest.raises(AuthenticationFailed):
        login(db, "abebe@example.com", "secret123")

    # the link stops working once the password has changed
    with pytest.raises(AuthenticationFailed) as exc:
        reset_password(db, token, "another1")
    assert exc.value.title == "Reset Failed"


@pytest.mark.parametrize("email,error,title", [
    ("", ValidationFailed, "Email Required"),
    ("not-an-email", ValidationFailed, "Invalid Email"),
    ("nobody@example.com", NotFound, "Reset Failed"),
])
def test_password_reset_request_errors(db, email, error, title):
    with pytest.raises(error) as exc:
        request_password_reset(db, email)
    assert exc.value.title == title
    assert db["mail"].count_documents({}) == 0


def test_reset_rejects_sign_in_tokens_and_short_passwords(db):
    register_account(db, name="Abebe Kebede", email="abebe@example.com", password="secret123")
    access = login(db, "abebe@example.com", "secret123")["access_token"]
    with pytest.raises(AuthenticationFailed):
        reset_password(db, access, "newsecret1")
    with pytest.raises(AuthenticationFailed):
        reset_password(db, "garbage", "newsecret1")

    token = request_password_reset(db, "abebe@example.com")
    with pytest.raises(ValidationFailed):
        reset_password(db, token, "abc")


def test_password_reset_routes(client, db):
    register(client)
    sent = client.post("/auth/password-reset", json={"email": "abebe@example.com"})
    assert sent.status_code == 200
    assert sent.json() == {"message": "Password reset instructions have been sent to your email."}

    link = db["mail"].find_one({})["text"]
    token = link.split("token=")[1].split()[0]
    # a reset link is not a bearer token
    assert client.get("/profile", headers={"Authorization": f"Bearer {token}"}).status_code == 401

    done = client.post("/auth/password-reset/confirm", json={"token": token, "new_password": "newsecret1"})
    assert done.status_code == 200
    assert auth_headers(client, password="newsecret1")
    again = client.post("/auth/password-reset/confirm", json={"token": token, "new_password": "newsecret2"})
    assert again.status_code == 401

    unknown = client.post("/auth/password-reset", json={"email": "nobody@example.com"})
    assert unknown.status_code == 404


def test_password_strength_route(client):
    weak = client.post("/auth/password-strength", json={"password": "abc"}).json()
    assert weak["label"] == "Weak"
    assert weak["unmet"]

    strong = client.post("/auth/password-strength", json={"password": "Secret#2024"}).json()
    assert strong["strength"] == 100
    assert strong["label"] == "Strong"
    assert strong["unmet"] == []
