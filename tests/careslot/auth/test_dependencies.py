from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from careslot.auth.dependencies import get_current_user, require_patient, require_practitioner
from careslot.auth.jwt_handler import create_access_token, decode_access_token
from careslot.core import config


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_access_token_round_trips_subject_and_role() -> None:
    payload = decode_access_token(create_access_token(42, 'practitioner'))

    assert payload['sub'] == '42'
    assert payload['role'] == 'practitioner'
    assert payload['exp'] > payload['iat']


def test_expired_token_is_rejected(db) -> None:
    issued_at = datetime.now(timezone.utc) - timedelta(hours=2)
    token = jwt.encode(
        {'sub': '1', 'role': 'patient', 'iat': issued_at, 'exp': issued_at + timedelta(minutes=5)},
        config.JWT_SECRET_KEY,
        algorithm=config.JWT_ALGORITHM,
    )

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_token_signed_with_other_key_is_rejected(db) -> None:
    token = jwt.encode({'sub': '1'}, 'not-the-server-key', algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token), db=db)

    assert exception_info.value.status_code == 401


def test_token_with_non_numeric_subject_is_rejected(db) -> None:
    token = jwt.encode({'sub': 'admin'}, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token), db=db)

    assert exception_info.value.detail == 'Invalid token subject'


def test_token_for_deleted_user_is_rejected(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(create_access_token(999, 'patient')), db=db)

    assert exception_info.value.detail == 'User not found'


def test_valid_token_resolves_user(db, patient) -> None:
    user = get_current_user(credentials=_credentials(create_access_token(patient.id, patient.role)), db=db)

    assert user.id == patient.id


def test_role_guards(practitioner, patient) -> None:
    assert require_practitioner(current_user=practitioner) is practitioner
    assert require_patient(current_user=patient) is patient

    with pytest.raises(HTTPException) as practitioner_error:
        require_practitioner(current_user=patient)
    with pytest.raises(HTTPException) as patient_error:
        require_patient(current_user=practitioner)

    assert practitioner_error.value.status_code == 403
    assert patient_error.value.status_code == 403
