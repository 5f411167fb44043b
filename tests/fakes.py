"""
Shared manifest builders and an in-memory DRM session capability.
"""

import base64
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

import orjson

from key.session_data import ASSET_METADATA_ID, SESSION_KEY_INFO_ID, DrmScheme
from static.ContentKey import ContentKey
from static.errors import DrmSessionError
from WVD.widevine import DrmSession, DrmSessionProvider, LicenseType


KID: bytes = bytes.fromhex('0123456789abcdef0123456789abcdef')
KEY_LOCATOR: str = 'data:;base64,' + base64.b64encode(KID).decode()
CONTENT_KEY: bytes = bytes.fromhex('00112233445566778899aabbccddeeff')


def b64json(obj: Any) -> str:
    return base64.b64encode(orjson.dumps(obj)).decode()


def master_manifest(
    variants: Sequence[Tuple[str, str, int, str]],
    session_key_ids: Optional[Any],
    key_descriptors: Optional[Any],
) -> bytes:
    """variants: (stable variant id, codecs, bandwidth, uri)"""
    lines = ['#EXTM3U', '#EXT-X-VERSION:7', '#EXT-X-INDEPENDENT-SEGMENTS']
    if session_key_ids is not None:
        lines.append(f'#EXT-X-SESSION-DATA:DATA-ID="{ASSET_METADATA_ID}",VALUE="{b64json(session_key_ids)}"')
    if key_descriptors is not None:
        lines.append(f'#EXT-X-SESSION-DATA:DATA-ID="{SESSION_KEY_INFO_ID}",VALUE="{b64json(key_descriptors)}"')
    for variant_id, codecs, bandwidth, uri in variants:
        lines.append(
            f'#EXT-X-STREAM-INF:BANDWIDTH={bandwidth},AVERAGE-BANDWIDTH={bandwidth},'
            f'CODECS="{codecs}",AUDIO="audio-stereo",STABLE-VARIANT-ID="{variant_id}"'
        )
        lines.append(uri)
    return ('\n'.join(lines) + '\n').encode()


def widevine_descriptor(locator: str = KEY_LOCATOR) -> dict:
    return {DrmScheme.WIDEVINE: {'URI': locator, 'KEYFORMAT': DrmScheme.WIDEVINE}}


def simple_master(codecs: str = 'mp4a.40.2', locator: str = KEY_LOCATOR) -> bytes:
    return master_manifest(
        [('v1', codecs, 256000, 'P1_A256.m3u8')],
        {'v1': {'AUDIO-SESSION-KEY-IDS': ['1', '2']}},
        {'1': widevine_descriptor('data:;base64,AAAAAAAAAAAAAAAAAAAAAA=='), '2': widevine_descriptor(locator)},
    )


def media_manifest(key_uri: Optional[str] = KEY_LOCATOR) -> bytes:
    lines = ['#EXTM3U', '#EXT-X-VERSION:7', '#EXT-X-TARGETDURATION:10']
    if key_uri is not None:
        lines.append(
            f'#EXT-X-KEY:METHOD=SAMPLE-AES,URI="{key_uri}",'
            f'KEYFORMAT="{DrmScheme.WIDEVINE}",KEYFORMATVERSIONS="1"'
        )
    lines += ['#EXTINF:9.98,', 'seg0.mp4', '#EXTINF:4.02,', 'seg1.mp4', '#EXT-X-ENDLIST']
    return ('\n'.join(lines) + '\n').encode()


class FakeSession(DrmSession):
    def __init__(
        self,
        keys: Iterable[ContentKey],
        fail_challenge: bool = False,
        fail_parse: bool = False,
        on_close: Optional[Callable[[], None]] = None,
    ) -> None:
        self.keys: List[ContentKey] = list(keys)
        self.fail_challenge = fail_challenge
        self.fail_parse = fail_parse
        self.headers: List[bytes] = []
        self.licenses: List[bytes] = []
        self.license_types: List[str] = []
        self.closed: int = 0
        self.on_close = on_close

    def build_challenge(self, header: bytes, license_type: str = LicenseType.STREAMING) -> bytes:
        if self.fail_challenge:
            raise DrmSessionError('header rejected')
        self.headers.append(header)
        self.license_types.append(license_type)
        return b'challenge:' + header

    def parse_license(self, license_message: bytes) -> List[ContentKey]:
        if self.fail_parse:
            raise DrmSessionError('license signature mismatch')
        self.licenses.append(license_message)
        return list(self.keys)

    def close(self) -> None:
        self.closed += 1
        if self.on_close is not None and self.closed == 1:
            self.on_close()


class FakeDrm(DrmSessionProvider):
    """Refuses to open more than max_sessions at once, like Cdm.MAX_NUM_OF_SESSIONS"""

    def __init__(
        self,
        keys: Optional[Iterable[ContentKey]] = None,
        max_sessions: int = 16,
        **session_kwargs: bool,
    ) -> None:
        if keys is None:
            keys = [
                ContentKey('SIGNING', b'\x07' * 16),
                ContentKey('CONTENT', CONTENT_KEY, kid=KID.hex()),
            ]
        self.keys = list(keys)
        self.session_kwargs = session_kwargs
        self.sessions: List[FakeSession] = []
        self.max_sessions = max_sessions
        self.active: int = 0
        self.peak: int = 0

    def open(self) -> FakeSession:
        if self.active >= self.max_sessions:
            raise DrmSessionError('Too many sessions')
        self.active += 1
        self.peak = max(self.peak, self.active)
        session = FakeSession(self.keys, on_close=self._closed, **self.session_kwargs)
        self.sessions.append(session)
        return session

    def _closed(self) -> None:
        self.active -= 1
