"""Bearer token gate for the FHIR API.

Only checks that an ``Authorization: Bearer <token>`` header is present.
The token itself is not validated here, but it must be non-empty:
``Bearer `` with nothing after the space is a malformed header.
"""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

bearer_scheme = HTTPBearer(auto_error=False)


async def verify_bearer_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> str:
    """Require a well-formed bearer Authorization header.

    Returns:
        The bearer token.

    Raises:
        HTTPException: 401 if the header is missing or not ``Bearer <token>``.
    """
    if credentials is None:
        if not request.headers.get("Authorization"):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authorization header required",
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    # HTTPBearer accepts any scheme casing and a bare "Bearer"
    scheme, _, token = request.headers["Authorization"].partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
        )

    return credentials.credentials
