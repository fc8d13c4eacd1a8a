from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Sequence

import numpy as np
from jose import JWTError, jwt

from ..exceptions import InvalidDescriptor
from .config import get_settings


def create_access_token(subject: str, role: str, minutes: int | None = None) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expires = now + timedelta(minutes=minutes or settings.access_token_minutes)
    payload = {
        "sub": subject,
        "role": role,
        "exp": expires,
        "iat": now,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict:
    settings = get_settings()
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])


def safe_decode_token(token: str) -> dict | None:
    try:
        return decode_access_token(token)
    except JWTError:
        return None


def parse_descriptor(values: Sequence[float] | np.ndarray, length: int | None = None) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float32)
    if vector.ndim != 1:
        raise InvalidDescriptor("Face descriptor must be a 1D vector.")
    if length is not None and vector.size != length:
        raise InvalidDescriptor(f"Face descriptor must contain exactly {length} values, got {vector.size}.")
    if vector.size == 0:
        raise InvalidDescriptor("Face descriptor is empty.")
    if not np.all(np.isfinite(vector)):
        raise InvalidDescriptor("Face descriptor contains non-finite values.")
    return vector
