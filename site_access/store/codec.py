from __future__ import annotations

import base64
import json

import numpy as np
from cryptography.fernet import Fernet, InvalidToken

from ..exceptions import InvalidDescriptor


class DescriptorCodec:
    """Encodes stored face descriptors as Fernet tokens, or as JSON arrays when encryption is off."""

    def __init__(self, key_material: str | None = None, encrypt: bool = True):
        self.encrypt_enabled = encrypt
        self._fernet: Fernet | None = None
        if encrypt:
            if not key_material:
                raise ValueError("Descriptor encryption requires key material.")
            padded = key_material.encode("utf-8")
            key = base64.urlsafe_b64encode(padded.ljust(32, b"0")[:32])
            self._fernet = Fernet(key)

    def encode(self, vector: np.ndarray) -> str:
        vector = np.asarray(vector, dtype=np.float32)
        if self._fernet is None:
            return json.dumps([float(v) for v in vector])
        return self._fernet.encrypt(vector.tobytes()).decode("utf-8")

    def decode(self, stored: str | list) -> np.ndarray:
        # Hosted tables may hand back an already-parsed JSON array.
        if isinstance(stored, list):
            return np.asarray(stored, dtype=np.float32)

        text = stored.strip()
        if text.startswith("["):
            try:
                return np.asarray(json.loads(text), dtype=np.float32)
            except (ValueError, TypeError) as exc:
                raise InvalidDescriptor(f"Stored descriptor is not a valid JSON array: {exc}") from exc

        if self._fernet is None:
            raise InvalidDescriptor("Stored descriptor is encrypted but no cipher key is configured.")
        try:
            payload = self._fernet.decrypt(text.encode("utf-8"))
        except InvalidToken as exc:
            raise InvalidDescriptor("Stored descriptor could not be decrypted.") from exc
        return np.frombuffer(payload, dtype=np.float32).copy()
