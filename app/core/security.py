"""Security related functions."""

import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError


class TokenAuthenticator:
    """
    Verifies bearer tokens issued by the external identity service.

    Tokens are HS256-signed JWTs sharing ``secret_key`` with the issuer. The
    ``sub`` claim carries the username; expiry is enforced when the token
    has an ``exp`` claim.

    :ivar secret_key: The secret key used to verify JWT tokens.
    :type secret_key: str
    :ivar algorithm: Signing algorithm accepted.
    :type algorithm: str
    """

    def __init__(self, secret_key: str, algorithm: str = "HS256"):
        self.secret_key = secret_key
        self.algorithm = algorithm

    def verify_token(self, token: str) -> dict:
        """
        Verifies a given JSON Web Token (JWT) and returns its payload.

        :param token: The JWT token to be verified.
        :return: A dictionary containing the decoded payload of the token if validation succeeds.
        """
        try:
            return jwt.decode(
                token,
                key=self.secret_key,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except InvalidTokenError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid authentication token: {str(e)}",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

    def create_token(self, subject: str, **claims) -> str:
        """Issue a token; used by tests and local tooling."""
        return jwt.encode({"sub": subject, **claims}, self.secret_key, algorithm=self.algorithm)
