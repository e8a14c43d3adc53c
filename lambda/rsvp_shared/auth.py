"""
Admin bearer credential check.

Admin tokens are issued elsewhere; this module only verifies them. A token is an
HS256 JWT signed with the shared admin secret and carrying role=admin.
"""

from typing import Dict, Any, Optional

from jose import jwt, JWTError

from rsvp_shared.errors import AuthenticationError


JWT_ALGORITHM = 'HS256'
ADMIN_ROLE = 'admin'


def verify_admin_token(headers: Optional[Dict[str, str]], secret: str) -> Dict[str, Any]:
    """
    Verify the Authorization header of an admin request.

    Args:
        headers: Request headers (any header-name case)
        secret: Shared HS256 signing secret

    Returns:
        The decoded token claims

    Raises:
        AuthenticationError: If the header is missing, the token is invalid or
            expired, or the token does not carry the admin role
    """
    headers = {k.lower(): v for k, v in (headers or {}).items()}
    auth_header = headers.get('authorization') or ''

    if not auth_header.startswith('Bearer '):
        raise AuthenticationError("Authorization header must start with 'Bearer'")

    token = auth_header[len('Bearer '):].strip()

    try:
        claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthenticationError('Invalid or expired token')

    if claims.get('role') != ADMIN_ROLE:
        raise AuthenticationError('Token does not grant admin access')

    return claims
