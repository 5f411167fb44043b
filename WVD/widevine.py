from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from google.protobuf.message import DecodeError
from pywidevine.cdm import Cdm
from pywidevine.device import Device
from pywidevine.exceptions import PyWidevineException
from pywidevine.pssh import PSSH

from static.ContentKey import ContentKey
from static.errors import DrmSessionError
from unit.handle.handle_log import setup_logging


logger = setup_logging('widevine', 'navy')


class LicenseType:
    STREAMING: str = 'STREAMING'


class DrmSession(ABC):
    """One open CDM session: header -> challenge, license -> keys. Not shared between tracks."""

    @abstractmethod
    def build_challenge(self, header: bytes, license_type: str = LicenseType.STREAMING) -> bytes:
        ...

    @abstractmethod
    def parse_license(self, license_message: bytes) -> List[ContentKey]:
        ...

    @abstractmethod
    def close(self) -> None:
        ...

    def __enter__(self) -> "DrmSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class DrmSessionProvider(ABC):
    # upper bound on sessions open at the same time
    max_sessions: int = 16

    @abstractmethod
    def open(self) -> DrmSession:
        ...


class WidevineSession(DrmSession):
    # raw bytes from Cdm.open()
    session_id: bytes

    def __init__(self, cdm: Cdm, session_id: bytes) -> None:
        self.cdm: Cdm = cdm
        self.session_id = session_id
        self._closed: bool = False

    def build_challenge(self, header: bytes, license_type: str = LicenseType.STREAMING) -> bytes:
        try:
            req_pssh: PSSH = PSSH(header)
            return self.cdm.get_license_challenge(self.session_id, req_pssh, license_type=license_type)
        except (PyWidevineException, DecodeError, ValueError, TypeError) as e:
            raise DrmSessionError(f"CDM rejected the PSSH: {e}") from e

    def parse_license(self, license_message: bytes) -> List[ContentKey]:
        try:
            self.cdm.parse_license(self.session_id, license_message)
            keys = self.cdm.get_keys(self.session_id)
        except (PyWidevineException, DecodeError, ValueError) as e:
            raise DrmSessionError(f"CDM could not parse the license: {e}") from e
        return [
            ContentKey(type=key.type, key=key.key, kid=key.kid.hex)
            for key in keys
        ]

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.cdm.close(self.session_id)
        except PyWidevineException as e:
            logger.warning(f"Failed to close CDM session: {e}")


class WidevineDRM(DrmSessionProvider):
    device: Device
    cdm: Cdm

    def __init__(self, device_path: Union[str, Path], device: Optional[Device] = None) -> None:
        if device is None:
            device_path = Path(device_path)
            if not device_path.exists():
                raise FileNotFoundError(f"Widevine device not found: {device_path}")
            device = Device.load(device_path)
        self.device = device
        self.cdm = Cdm.from_device(self.device)
        self.max_sessions = Cdm.MAX_NUM_OF_SESSIONS

    def open(self) -> WidevineSession:
        try:
            session_id: bytes = self.cdm.open()
        except PyWidevineException as e:
            raise DrmSessionError(f"Cannot open CDM session: {e}") from e
        logger.debug(f"Opened CDM session {session_id.hex()}")
        return WidevineSession(self.cdm, session_id)
