from datetime import timedelta

from auth import hash_reset_token, verify_password
from conftest import PASSWORD
from database import utcnow


def reset_token_from(mail):
    return mail["text"].rsplit("/", 1)[-1].strip()


class TestRegister:
    def test_creates_user_and_returns_token(self, client, db):
        res = client.post("/api/auth/register", json={
            "name": "Jane Doe", "email": "jane@example.com", "password": PASSWORD, "role": "publisher",
        })

        assert res.status_code == 201
        assert res.json()["success"] is True
        assert res.json()["token"]
        assert "token" in res.cookies
        user = db["user"].find_one({"email": "jane@example.com"})
        assert user["role"] == "publisher"
        assert verify_password(PASSWORD, user["password_hash"])

    def test_duplicate_email(self, client, make_user):
        make_user(email="taken@example.com")

        res = client.post("/api/auth/register", json={
            "name": "Jane", "email": "taken@example.com", "password": PASSWORD,
        })

        assert res.status_code == 400
        assert res.json()["success"] is False
        assert "email" in res.json()["errors"]

    def test_validation_error_is_reported_per_field(self, client):
        res = client.post("/api/auth/register", json={"name": "", "email": "jane@example.com", "password": PASSWORD})

        assert res.status_code == 400
        assert res.json()["message"]
        assert "name" in res.json()["errors"]

    def test_admin_role_cannot_be_self_assigned(self, client):
        res = client.post("/api/auth/register", json={
            "name": "Jane", "email": "jane@example.com", "password": PASSWORD, "role": "admin",
        })

        assert res.status_code == 400
        assert "role" in res.json()["errors"]


class TestLogin:
    def test_requires_email_and_password(self, client):
        res = client.post("/api/auth/login", json={"email": "", "password": ""})

        assert res.status_code == 400
        assert res.json()["success"] is False

    def test_unknown_email_and_wrong_password_look_the_same(self, client, make_user):
        make_user(email="jane@example.com")

        unknown = client.post("/api/auth/login", json={"email": "nobody@example.com", "password": PASSWORD})
        wrong = client.post("/api/auth/login", json={"email": "jane@example.com", "password": "not-the-password"})

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert "errors" not in unknown.json()

    def test_returns_token(self, client, make_user):
        make_user(email="jane@example.com")

        res = client.post("/api/auth/login", json={"email": "jane@example.com", "password": PASSWORD})

        assert res.status_code == 200
        assert res.json()["token"]

    def test_mixed_case_email_logs_in_as_registered(self, client, db):
        register = client.post("/api/auth/register", json={
            "name": "Jane Doe", "email": "Jane@Example.COM", "password": PASSWORD,
        })

        res = client.post("/api/auth/login", json={"email": "Jane@Example.COM", "password": PASSWORD})
        lower = client.post("/api/auth/login", json={"email": "jane@example.com", "password": PASSWORD})

        assert register.status_code == 201
        assert res.status_code == 200
        assert lower.status_code == 200
        assert db["user"].find_one({})["email"] == "jane@example.com"


class TestMe:
    def test_requires_token(self, client):
        res = client.get("/api/auth/me")

        assert res.status_code == 401
        assert res.json()["success"] is False

    def test_rejects_invalid_token(self, client):
        res = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})

        assert res.status_code == 401

    def test_rejects_token_for_deleted_user(self, client, db, make_user, auth_headers):
        user = make_user()
        headers = auth_headers(user)
        db["user"].delete_one({"_id": user["_id"]})

        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_returns_current_user_without_password(self, client, make_user, auth_headers):
        user = make_user(email="jane@example.com")

        res = client.get("/api/auth/me", headers=auth_headers(user))

        assert res.status_code == 200
        assert res.json()["data"]["id"] == str(user["_id"])
        assert res.json()["data"]["email"] == "jane@example.com"
        assert "password_hash" not in res.json()["data"]

    def test_accepts_token_cookie(self, client, make_user):
        make_user(email="jane@example.com")
        client.post("/api/auth/login", json={"email": "jane@example.com", "password": PASSWORD})

        res = client.get("/api/auth/me")

        assert res.status_code == 200
        assert res.json()["data"]["email"] == "jane@example.com"


class TestUpdateDetails:
    def test_updates_name_and_email(self, client, make_user, auth_headers):
        user = make_user()

        res = client.put("/api/auth/updatedetails", headers=auth_headers(user),
                         json={"name": "New Name", "email": "new@example.com"})

        assert res.status_code == 200
        assert res.json()["data"]["name"] == "New Name"
        assert res.json()["data"]["email"] == "new@example.com"

    def test_rejects_email_of_another_user(self, client, make_user, auth_headers):
        make_user(email="taken@example.com")
        user = make_user()

        res = client.put("/api/auth/updatedetails", headers=auth_headers(user), json={"email": "taken@example.com"})

        assert res.status_code == 400
        assert "email" in res.json()["errors"]


class TestUpdatePassword:
    def test_wrong_current_password(self, client, make_user, auth_headers):
        user = make_user()

        res = client.put("/api/auth/updatepassword", headers=auth_headers(user),
                         json={"currentPassword": "wrong-password", "newPassword": "brand-new-pass"})

        assert res.status_code == 401

    def test_changes_password_and_returns_token(self, client, db, make_user, auth_headers):
        user = make_user()

        res = client.put("/api/auth/updatepassword", headers=auth_headers(user),
                         json={"currentPassword": PASSWORD, "newPassword": "brand-new-pass"})

        assert res.status_code == 200
        assert res.json()["token"]
        stored = db["user"].find_one({"_id": user["_id"]})
        assert verify_password("brand-new-pass", stored["password_hash"])


class TestForgotPassword:
    def test_unknown_email(self, client):
        res = client.post("/api/auth/forgotpassword", json={"email": "nobody@example.com"})

        assert res.status_code == 404

    def test_stores_hashed_token_and_mails_plaintext(self, client, db, mailer, make_user):
        user = make_user(email="jane@example.com")

        res = client.post("/api/auth/forgotpassword", json={"email": "jane@example.com"})

        assert res.status_code == 200
        assert mailer.sent[0]["to"] == "jane@example.com"
        token = reset_token_from(mailer.sent[0])
        stored = db["user"].find_one({"_id": user["_id"]})
        assert stored["resetPasswordToken"] == hash_reset_token(token)
        assert stored["resetPasswordExpire"] > utcnow()

    def test_mail_failure_clears_reset_fields(self, client, db, mailer, make_user):
        user = make_user(email="jane@example.com")
        mailer.fail = True

        res = client.post("/api/auth/forgotpassword", json={"email": "jane@example.com"})

        assert res.status_code == 500
        assert res.json()["success"] is False
        stored = db["user"].find_one({"_id": user["_id"]})
        assert "resetPasswordToken" not in stored
        assert "resetPasswordExpire" not in stored

    def test_mixed_case_email_finds_the_account(self, client, mailer):
        client.post("/api/auth/register", json={
            "name": "Jane Doe", "email": "Jane@Example.COM", "password": PASSWORD,
        })

        res = client.post("/api/auth/forgotpassword", json={"email": "Jane@Example.COM"})

        assert res.status_code == 200
        assert mailer.sent[0]["to"] == "jane@example.com"


class TestResetPassword:
    def test_round_trip_consumes_token(self, client, db, mailer, make_user):
        user = make_user(email="jane@example.com")
        client.post("/api/auth/forgotpassword", json={"email": "jane@example.com"})
        token = reset_token_from(mailer.sent[0])

        first = client.put(f"/api/auth/resetpassword/{token}", json={"password": "reset-password"})
        second = client.put(f"/api/auth/resetpassword/{token}", json={"password": "another-password"})

        assert first.status_code == 200
        assert first.json()["token"]
        assert second.status_code == 400
        stored = db["user"].find_one({"_id": user["_id"]})
        assert verify_password("reset-password", stored["password_hash"])
        assert "resetPasswordToken" not in stored
        assert "resetPasswordExpire" not in stored

    def test_invalid_token(self, client):
        res = client.put("/api/auth/resetpassword/a", json={"password": "reset-password"})

        assert res.status_code == 400

    def test_expired_token(self, client, db, make_user):
        user = make_user()
        db["user"].update_one({"_id": user["_id"]}, {"$set": {
            "resetPasswordToken": hash_reset_token("abc123"),
            "resetPasswordExpire": utcnow() - timedelta(minutes=1),
        }})

        res = client.put("/api/auth/resetpassword/abc123", json={"password": "reset-password"})

        assert res.status_code == 400


def test_logout_clears_cookie(client):
    res = client.get("/api/auth/logout")

    assert res.status_code == 200
    assert res.json() == {"success": True, "data": {}}
    assert res.cookies.get("token") == "none"
