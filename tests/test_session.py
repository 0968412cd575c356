from datetime import timedelta

import pytest
from jose import jwt
from pydantic import ValidationError as PydanticValidationError

from urbansetu.core.exceptions import AuthenticationError, ValidationError
from urbansetu.models.user_model import ProfileUpdate, RegisterRequest, UserType
from urbansetu.services.session_service import InMemoryUserStore, SessionManager, home_for
from urbansetu.utils.security import (
    create_access_token,
    decode_access_token,
    get_password_hash,
    verify_password,
)


@pytest.fixture
def sessions():
    return SessionManager(InMemoryUserStore())


def registration(email="asha@example.com", user_type=UserType.citizen, name="Asha Verma") -> RegisterRequest:
    return RegisterRequest(email=email, password="secret123", name=name, user_type=user_type)


def test_password_hashing():
    hashed = get_password_hash("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret123", "not-a-bcrypt-hash")


def test_expired_token_rejected():
    token = create_access_token("u1", "citizen", expires_delta=timedelta(seconds=-5))
    with pytest.raises(AuthenticationError):
        decode_access_token(token)


def test_token_signed_with_other_key_rejected():
    forged = jwt.encode({"sub": "u1", "jti": "abc", "type": "admin"}, "not-the-server-key", algorithm="HS256")
    with pytest.raises(AuthenticationError):
        decode_access_token(forged)


async def test_register_and_resolve(sessions):
    session = await sessions.register(registration(email="Asha@Example.com"))
    assert session.user.email == "asha@example.com"
    assert session.user.avatar.startswith("https://ui-avatars.com/api/?name=Asha%20Verma")

    resolved = await sessions.resolve(session.token)
    assert resolved.user_id == session.user_id
    assert resolved.user_type == UserType.citizen


async def test_duplicate_email_rejected(sessions):
    await sessions.register(registration())
    with pytest.raises(ValidationError) as exc_info:
        await sessions.register(registration())
    assert "email" in exc_info.value.errors


async def test_login_requires_matching_user_type(sessions):
    await sessions.register(registration())
    session = await sessions.login("asha@example.com", "secret123", UserType.citizen)
    assert session.user.name == "Asha Verma"

    with pytest.raises(AuthenticationError):
        await sessions.login("asha@example.com", "secret123", UserType.admin)
    with pytest.raises(AuthenticationError):
        await sessions.login("asha@example.com", "wrong-password", UserType.citizen)
    with pytest.raises(AuthenticationError):
        await sessions.login("nobody@example.com", "secret123", UserType.citizen)


async def test_logout_revokes_token(sessions):
    session = await sessions.register(registration())
    await sessions.logout(session.token)
    with pytest.raises(AuthenticationError):
        await sessions.resolve(session.token)

    fresh = await sessions.login("asha@example.com", "secret123", UserType.citizen)
    assert (await sessions.resolve(fresh.token)).user_id == session.user_id


async def test_update_profile(sessions):
    session = await sessions.register(registration())
    user = await sessions.update_profile(session.user_id, ProfileUpdate(name="Asha V", phone="9876543210"))
    assert user.name == "Asha V"
    assert user.phone == "9876543210"
    assert "Asha%20V" in user.avatar

    with pytest.raises(ValidationError):
        await sessions.update_profile(session.user_id, ProfileUpdate(name="   "))


def test_home_pages():
    assert home_for(UserType.admin) == "/admin"
    assert home_for("citizen") == "/citizen"


def test_password_longer_than_bcrypt_limit_is_refused():
    with pytest.raises(PydanticValidationError):
        RegisterRequest(email="asha@example.com", password="x" * 80)
    # 36 two-byte characters is exactly 72 bytes
    assert RegisterRequest(email="asha@example.com", password="é" * 36).password == "é" * 36
    with pytest.raises(PydanticValidationError):
        RegisterRequest(email="asha@example.com", password="é" * 37)

    with pytest.raises(ValidationError):
        get_password_hash("x" * 73)
    assert not verify_password("x" * 80, get_password_hash("x" * 72))


async def test_admin_registration_requires_known_department(sessions):
    with pytest.raises(PydanticValidationError):
        registration(email="officer@example.com", user_type=UserType.admin)
    with pytest.raises(PydanticValidationError):
        RegisterRequest(email="officer@example.com", password="secret123",
                        user_type=UserType.admin, department="Ministry of Magic")

    request = RegisterRequest(email="officer@example.com", password="secret123",
                              user_type=UserType.admin, department="Road Authority")
    session = await sessions.register(request)
    assert session.user.department == "Road Authority"


async def test_citizens_have_no_department(sessions):
    request = RegisterRequest(email="asha@example.com", password="secret123", department="Road Authority")
    session = await sessions.register(request)
    assert session.user.department is None
