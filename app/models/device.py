# app/models/device.py
from pydantic import BaseModel, field_validator

TOKEN_HEX_LENGTH = 64


class Device(BaseModel):
    id: str
    token: str      # 64 caracteres hex, espacios permitidos ("<aaaa bbbb ...>")

    @field_validator("token")
    @classmethod
    def _normalize_token(cls, value: str) -> str:
        token = value.strip("<>").replace(" ", "").lower()
        if len(token) != TOKEN_HEX_LENGTH:
            raise ValueError(f"device token must have {TOKEN_HEX_LENGTH} hex characters")
        bytes.fromhex(token)  # ValueError si no es hex
        return token

    def to_hexa(self) -> bytes:
        """Token binario de 32 bytes que va en el frame."""
        return bytes.fromhex(self.token)
