import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from therapy_backend.auth import jwt_handler
from therapy_backend.auth.dependencies import get_current_user
from therapy_backend.core import config
from therapy_backend.models.user import User
from therapy_backend.routes.auth_routes import me


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trip_keeps_subject_and_role() -> None:
    token = jwt_handler.create_access_token('ravi@example.com', role='patient')

    payload = jwt_handler.decode_access_token(token)

    assert payload['sub'] == 'ravi@example.com'
    assert payload['role'] == 'patient'
    assert payload['exp'] > payload['iat']


def test_access_token_signed_with_other_key_is_rejected() -> None:
    token = jwt.encode({'sub': 'ravi@example.com'}, 'not-the-clinic-key', algorithm=config.JWT_ALGORITHM)

    with pytest.raises(jwt.InvalidSignatureError):
        jwt_handler.decode_access_token(token)


def test_get_current_user_resolves_token_subject(db, clinic) -> None:
    token = jwt_handler.create_access_token('ravi@example.com')

    user = get_current_user(credentials=_credentials(token), db=db)

    assert user.id == clinic.patient_user_id


@pytest.mark.parametrize(
    ('token_factory', 'error_detail'),
    [
        (lambda: 'not-a-jwt', 'Invalid token'),
        (lambda: jwt_handler.create_access_token('ravi@example.com', expires_minutes=-5), 'Invalid token'),
        (lambda: jwt_handler.create_access_token(''), 'Invalid token subject'),
        (lambda: jwt_handler.create_access_token('nobody@example.com'), 'User not found'),
    ],
)
def test_get_current_user_rejects_bad_tokens(db, clinic, token_factory, error_detail: str) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token_factory()), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == error_detail


def test_me_returns_profile(db, clinic) -> None:
    user = db.get(User, clinic.practitioner_user_id)

    assert me(current_user=user) == {
        'id': clinic.practitioner_user_id,
        'email': 'asha@clinic.example',
        'name': 'Asha Rao',
        'role': 'practitioner',
    }
