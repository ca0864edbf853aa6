import logging
from urllib.parse import quote

import jwt
import requests

from movie_data_errors import AuthServiceError

logger = logging.getLogger(__name__)

JWT_GENERATE_PATH = "/reel-rating-auth-service/jwt/generate/"
USERNAME_CLAIM = "upn"


def build_token_url(auth_service_url: str, session_id: str):
    """
    Build the auth service URL that exchanges a session id for a JWT.

    Args:
        auth_service_url (str): Base URL of the auth service.
        session_id (str): Session id supplied by the client.

    Returns:
        str: Full request URL.
    """
    return f"{auth_service_url.rstrip('/')}{JWT_GENERATE_PATH}{quote(session_id, safe='')}"


def fetch_session_token(session_id: str, auth_service_url: str, timeout: float = 5.0):
    """
    Ask the auth service for the JWT belonging to a session.

    Args:
        session_id (str): Session id supplied by the client.
        auth_service_url (str): Base URL of the auth service.
        timeout (float): Request timeout in seconds.

    Returns:
        str | None: Encoded token, or None when the session is unknown.

    Raises:
        AuthServiceError: The service is unreachable or failed.
    """
    url = build_token_url(auth_service_url, session_id)
    try:
        response = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        raise AuthServiceError(f"Auth service unreachable: {exc}")

    if response.status_code in (401, 403, 404):
        return None
    if response.status_code >= 500:
        raise AuthServiceError(f"Auth service answered {response.status_code}")

    token = (response.text or "").strip()
    return token or None


def decode_username(token: str, verification_key: str, algorithms: list[str]):
    """
    Verify a JWT and read the username claim.

    Args:
        token (str): Encoded JWT.
        verification_key (str): Shared secret or public key.
        algorithms (list[str]): Accepted signing algorithms.

    Returns:
        str | None: Username, or None when the token is invalid.
    """
    try:
        claims = jwt.decode(token, verification_key, algorithms=algorithms, options={"verify_aud": False})
    except jwt.PyJWTError as exc:
        logger.info("Rejected session token: %s", exc)
        return None
    username = claims.get(USERNAME_CLAIM)
    if not username:
        return None
    return str(username)


def get_username(session_id: str | None, auth_service_url: str, verification_key: str, algorithms: list[str], timeout: float = 5.0):
    """
    Resolve the username behind a client session.

    Args:
        session_id (str | None): Session id supplied by the client.
        auth_service_url (str): Base URL of the auth service.
        verification_key (str): Key used to verify the JWT signature.
        algorithms (list[str]): Accepted signing algorithms.
        timeout (float): Request timeout in seconds.

    Returns:
        str | None: Username, or None when the session is missing or invalid.
    """
    if not session_id:
        return None
    token = fetch_session_token(session_id, auth_service_url, timeout)
    if not token:
        return None
    return decode_username(token, verification_key, algorithms)
