import base64
import binascii
from dataclasses import dataclass

from google.protobuf.message import DecodeError
from pywidevine.license_protocol_pb2 import WidevinePsshData
from pywidevine.pssh import PSSH

from static.errors import EncodingError
from unit.handle.handle_log import setup_logging


logger = setup_logging('pssh', 'aquamarine')


PSSH_VERSION: int = 0
ALGORITHM_AESCTR: int = 1


def decode_key_id(identifier: str) -> bytes:
    """
    Raw key id carried by a key locator such as 'data:;base64,<kid>'.

    The key id is the base64 payload after the last comma.
    """
    if not isinstance(identifier, str):
        raise EncodingError(f"Key locator must be a string, got {type(identifier).__name__}")
    payload = identifier.rsplit(',', 1)[-1].strip()
    if not payload:
        raise EncodingError(f"Key locator has no key id payload: {identifier!r}")
    try:
        key_id = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"Key id is not valid base64: {payload!r}") from e
    if not key_id:
        raise EncodingError(f"Key id is empty: {identifier!r}")
    return key_id


@dataclass(frozen=True)
class ProtectionHeader:
    """Widevine PSSH box content: fixed version 0, AES-CTR algorithm, the key id list."""

    key_ids: tuple[bytes, ...]
    version: int = PSSH_VERSION
    algorithm: int = ALGORITHM_AESCTR

    @classmethod
    def from_identifier(cls, identifier: str) -> "ProtectionHeader":
        return cls(key_ids=(decode_key_id(identifier),))

    def init_data(self) -> bytes:
        pssh_data = WidevinePsshData()
        pssh_data.algorithm = self.algorithm
        pssh_data.key_ids.extend(self.key_ids)
        return pssh_data.SerializeToString()

    def to_pssh(self) -> PSSH:
        return PSSH.new(
            system_id=PSSH.SystemId.Widevine,
            init_data=self.init_data(),
            version=self.version,
        )

    def dump(self) -> bytes:
        return self.to_pssh().dump()

    def dumps(self) -> str:
        return base64.b64encode(self.dump()).decode()

    @classmethod
    def loads(cls, data: bytes) -> "ProtectionHeader":
        try:
            pssh = PSSH(data)
            pssh_data = WidevinePsshData()
            pssh_data.ParseFromString(pssh.init_data)
        except (DecodeError, ValueError, TypeError) as e:
            raise EncodingError(f"Not a Widevine PSSH box: {e}") from e
        return cls(key_ids=tuple(pssh_data.key_ids), version=pssh.version, algorithm=pssh_data.algorithm)


def build(identifier: str) -> bytes:
    """Serialize the key id behind identifier into a Widevine PSSH box."""
    header = ProtectionHeader.from_identifier(identifier)
    logger.debug(f"PSSH for key id {header.key_ids[0].hex()}: {header.dumps()}")
    return header.dump()
