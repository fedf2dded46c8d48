# tests/v1/test_dependencies.py
"""Tests for API dependencies module."""

from types import SimpleNamespace

import pytest
from fastapi import HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials
from jose import jwt

from clinic_queue.api.v1.dependencies import get_caller, get_queue_service, get_runtime
from clinic_queue.core.security import create_access_token, decode_subject
from clinic_queue.core.settings import settings


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestGetCaller:
    """Test the get_caller dependency function."""

    def test_valid_token(self):
        caller = get_caller(_credentials(create_access_token("staff-7")))
        assert caller.user_id == "staff-7"

    def test_invalid_token(self):
        with pytest.raises(HTTPException) as exc_info:
            get_caller(_credentials("garbage"))

        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert "Could not validate credentials" in exc_info.value.detail

    def test_token_signed_with_other_key(self):
        token = jwt.encode({"sub": "staff-7"}, "another-secret", algorithm=settings.jwt_algorithm)
        with pytest.raises(HTTPException):
            get_caller(_credentials(token))

    def test_token_without_subject(self):
        token = jwt.encode({"role": "manager"}, settings.secret_key, algorithm=settings.jwt_algorithm)
        assert decode_subject(token) is None
        with pytest.raises(HTTPException):
            get_caller(_credentials(token))


class TestGetRuntime:
    """Test runtime lookup on the application state."""

    def test_missing_runtime_is_503(self):
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace()))
        with pytest.raises(HTTPException) as exc_info:
            get_runtime(request)
        assert exc_info.value.status_code == status.HTTP_503_SERVICE_UNAVAILABLE

    def test_runtime_is_returned(self, runtime):
        request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(runtime=runtime)))
        assert get_runtime(request) is runtime
        assert get_queue_service(runtime) is runtime.queue_service
