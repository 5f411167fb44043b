import base64
import binascii
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

import httpx
import orjson

from static.api_error_handle import api_error_handle
from static.color import Color
from static.ContentKey import CONTENT_KEY_SIZE, ContentKey
from static.errors import (
    ChallengeBuildFailed,
    DrmSessionError,
    EncodingError,
    LicenseError,
    LicenseKeyNotFound,
    NetworkError,
    ResponseParseFailed,
    ServerRejected,
)
from unit.handle.handle_log import setup_logging
from WVD.widevine import DrmSession, DrmSessionProvider, LicenseType


logger = setup_logging('license_exchange', 'honeydew')


LICENSE_API_URL: str = 'https://play.itunes.apple.com/WebObjects/MZPlay.woa/wa/acquireWebPlaybackLicense'
KEY_SYSTEM: str = 'com.widevine.alpha'


class ExchangeState(Enum):
    IDLE = 'idle'
    SESSION_OPENED = 'session_opened'
    CHALLENGE_BUILT = 'challenge_built'
    CHALLENGE_SENT = 'challenge_sent'
    RESPONSE_RECEIVED = 'response_received'
    KEY_EXTRACTED = 'key_extracted'
    CLOSED = 'closed'
    FAILED = 'failed'


def select_content_key(keys: Iterable[ContentKey]) -> ContentKey:
    """First CONTENT key whose length matches the AES-128 key size, returned unchanged."""
    for key in keys:
        if key.is_content and len(key.key) == CONTENT_KEY_SIZE:
            return key
    raise LicenseKeyNotFound(f"No {CONTENT_KEY_SIZE}-byte CONTENT key in license")


class LicenseExchange:
    """
    Single-use license exchange for one track.

    open_session -> build_challenge -> send_challenge -> parse_response -> select_content_key.
    A challenge belongs to one CDM session and is never replayed: on any failure the
    instance ends in FAILED and the caller must start over with a new instance.
    """

    def __init__(
        self,
        drm: DrmSessionProvider,
        client: httpx.AsyncClient,
        track_id: str,
        track_uri: str,
        license_url: str = LICENSE_API_URL,
        license_type: str = LicenseType.STREAMING,
    ) -> None:
        self.drm: DrmSessionProvider = drm
        self.client: httpx.AsyncClient = client
        self.track_id: str = track_id
        self.track_uri: str = track_uri
        self.license_url: str = license_url
        self.license_type: str = license_type
        self.state: ExchangeState = ExchangeState.IDLE
        self.session: Optional[DrmSession] = None

    def _expect(self, *states: ExchangeState) -> None:
        if self.state not in states:
            raise RuntimeError(
                f"LicenseExchange for {self.track_id} is {self.state.value}, "
                f"expected {' or '.join(s.value for s in states)}"
            )

    def open_session(self) -> DrmSession:
        self._expect(ExchangeState.IDLE)
        try:
            self.session = self.drm.open()
        except DrmSessionError:
            self.state = ExchangeState.FAILED
            raise
        self.state = ExchangeState.SESSION_OPENED
        return self.session

    def build_challenge(self, session: DrmSession, header: bytes, license_type: Optional[str] = None) -> bytes:
        self._expect(ExchangeState.SESSION_OPENED)
        try:
            challenge = session.build_challenge(header, license_type or self.license_type)
        except DrmSessionError as e:
            self.state = ExchangeState.FAILED
            raise ChallengeBuildFailed(str(e)) from e
        self.state = ExchangeState.CHALLENGE_BUILT
        return challenge

    def _license_payload(self, challenge: bytes) -> Dict[str, Any]:
        return {
            "challenge": base64.b64encode(challenge).decode(),
            "key-system": KEY_SYSTEM,
            "uri": self.track_uri,
            "adamId": self.track_id,
            "isLibrary": False,
            "user-initiated": True,
        }

    async def send_challenge(self, challenge: bytes) -> bytes:
        self._expect(ExchangeState.CHALLENGE_BUILT)
        self.state = ExchangeState.CHALLENGE_SENT
        try:
            response: httpx.Response = await self.client.post(
                self.license_url,
                content=orjson.dumps(self._license_payload(challenge)),
                headers={"content-type": "application/json"},
            )
        except httpx.RequestError as e:
            self.state = ExchangeState.FAILED
            raise NetworkError(f"License request for {self.track_id} failed: {e!r}") from e

        try:
            return self._read_license(response)
        except LicenseError:
            self.state = ExchangeState.FAILED
            logger.error(
                f"{Color.bg('maroon')}License rejected{Color.reset()} "
                f"{Color.fg('gold')}HTTP {response.status_code}{Color.reset()} "
                f"{api_error_handle(response.status_code) or ''}"
            )
            raise
        except EncodingError:
            self.state = ExchangeState.FAILED
            raise

    def _read_license(self, response: httpx.Response) -> bytes:
        if not response.is_success:
            raise ServerRejected(response.status_code, response.text)
        try:
            body = orjson.loads(response.content)
        except orjson.JSONDecodeError:
            raise ServerRejected(response.status_code, response.text)
        license_b64 = body.get("license") if isinstance(body, dict) else None
        if not isinstance(license_b64, str):
            raise ServerRejected(response.status_code, response.text)
        try:
            license_message = base64.b64decode(license_b64, validate=True)
        except (binascii.Error, ValueError) as e:
            raise EncodingError(f"License field is not valid base64: {e}") from e
        self.state = ExchangeState.RESPONSE_RECEIVED
        return license_message

    def parse_response(self, session: DrmSession, response: bytes) -> List[ContentKey]:
        self._expect(ExchangeState.RESPONSE_RECEIVED)
        try:
            return session.parse_license(response)
        except DrmSessionError as e:
            self.state = ExchangeState.FAILED
            raise ResponseParseFailed(str(e)) from e

    def select_content_key(self, keys: Iterable[ContentKey]) -> ContentKey:
        self._expect(ExchangeState.RESPONSE_RECEIVED)
        try:
            key = select_content_key(keys)
        except LicenseKeyNotFound:
            self.state = ExchangeState.FAILED
            raise
        self.state = ExchangeState.KEY_EXTRACTED
        return key

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None
        if self.state is ExchangeState.KEY_EXTRACTED:
            self.state = ExchangeState.CLOSED
        elif self.state is not ExchangeState.CLOSED:
            self.state = ExchangeState.FAILED

    async def run(self, header: bytes) -> ContentKey:
        """Drive the whole exchange; the CDM session is closed on every exit path."""
        session = self.open_session()
        try:
            challenge = self.build_challenge(session, header)
            response = await self.send_challenge(challenge)
            keys = self.parse_response(session, response)
            content_key = self.select_content_key(keys)
            logger.info(
                f"{Color.fg('light_gray')}Content key for {Color.fg('plum')}{self.track_id}{Color.reset()} "
                f"{Color.fg('light_gray')}kid:{Color.reset()} {Color.fg('gold')}{content_key.kid}{Color.reset()}"
            )
            logger.debug(f"key: {content_key.hex}")
            return content_key
        finally:
            self.close()
