from dataclasses import dataclass
from typing import Any, Dict, Optional


class KeyType:
    CONTENT: str = 'CONTENT'
    SIGNING: str = 'SIGNING'


# AES-128 in CTR mode
CONTENT_KEY_SIZE: int = 16


@dataclass(frozen=True)
class ContentKey:
    type: str
    key: bytes
    kid: Optional[str] = None

    @property
    def is_content(self) -> bool:
        return str(self.type).upper() == KeyType.CONTENT

    @property
    def hex(self) -> str:
        return self.key.hex()

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "kid": self.kid, "key": self.hex}

    def __str__(self) -> str:
        return f"{self.kid}:{self.hex}" if self.kid else self.hex
