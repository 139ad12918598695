from unittest.mock import Mock

from app.utils.jwt_utils import create_access_token


def token_for(user):
    return create_access_token(user.id, role=user.role)


def auth_headers(user):
    return {"Authorization": f"Bearer {token_for(user)}"}


def fake_response(status_code=200, payload=None):
    """Stand-in for a ``requests.Response`` carrying a JSON body."""
    r = Mock()
    r.status_code = status_code
    r.content = b"{}" if payload is not None else b""
    r.json.return_value = payload if payload is not None else {}
    return r
