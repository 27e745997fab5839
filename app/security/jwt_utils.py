# app/security/jwt_utils.py
import os
import jwt
from fastapi import HTTPException, status

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-to-a-long-random-secret")
JWT_ALG = os.getenv("JWT_ALG", "HS256")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(authorization_header: str) -> dict:
    """
    Toma el header: Authorization: Bearer <token>
    Lo valida y devuelve el payload.
    Lanza 401 si falta, es inválido o no trae "sub".
    Solo servicios/operadores con token pueden encolar o disparar envíos.
    """
    if not authorization_header:
        raise _unauthorized("Missing Authorization header")

    if not authorization_header.startswith("Bearer "):
        raise _unauthorized("Invalid Authorization header format")

    token = authorization_header.removeprefix("Bearer ").strip()

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        raise _unauthorized("Invalid token")

    if "sub" not in payload:
        raise _unauthorized("Token without subject")

    return payload
