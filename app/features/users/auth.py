"""
Bearer token verification.

Tokens are issued by the external authentication service; this backend only
verifies them and reads the user id from the "sub" claim.
"""
import jwt
from fastapi import HTTPException, status

from app.core import config


def verify_jwt_token(token: str) -> dict:
    """
    Verify a JWT and return its payload.
    
    Args:
        token: JWT token from Authorization header
        
    Returns:
        Decoded JWT payload
        
    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
        
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.InvalidTokenError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid token: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )
