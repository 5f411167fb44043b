from abc import ABC, abstractmethod
from re import Pattern
from typing import Optional, Union

from key.session_data import DrmScheme, SessionKeyInfo
from lib.mux.parse_hls import HLSParser, ManifestVariant, MasterManifest, join_stream_url
from static.color import Color
from static.errors import ExtractionKeyNotFound
from static.StreamInfo import StreamInfo
from unit.handle.handle_log import setup_logging


logger = setup_logging('drm_source', 'tomato')


ENHANCED_HLS: str = 'enhanced_hls'
WEBPLAYBACK: str = 'webplayback'


class DrmMetadataSource(ABC):
    """Turns fetched manifest bytes into a StreamInfo carrying the key locator."""

    origin: str

    @abstractmethod
    def stream_info(self, data: Union[bytes, str], base_uri: str) -> StreamInfo:
        ...


class MasterManifestSource(DrmMetadataSource):
    """Enhanced HLS master playlist: key locator lives in the session data blocks."""

    origin = ENHANCED_HLS

    def __init__(self, codec_pattern: Optional[Pattern[str]] = None, scheme: str = DrmScheme.WIDEVINE) -> None:
        self.codec_pattern = codec_pattern
        self.scheme = scheme

    def select_variant(self, manifest: MasterManifest) -> ManifestVariant:
        if self.codec_pattern is None:
            return manifest.variants[0]
        matches = [
            v for v in manifest.variants
            if v.codecs and self.codec_pattern.fullmatch(v.codecs)
        ]
        if not matches:
            logger.warning(
                f"No variant matches codec {Color.fg('gold')}{self.codec_pattern.pattern}{Color.reset()}, "
                f"using {manifest.variants[0].codecs}"
            )
            return manifest.variants[0]
        return max(matches, key=lambda v: v.average_bandwidth or v.bandwidth or 0)

    def stream_info(self, data: Union[bytes, str], base_uri: str) -> StreamInfo:
        manifest = HLSParser.parse_master(data)
        variant = self.select_variant(manifest)
        session_keys = SessionKeyInfo(manifest)
        locator = session_keys.identifier(variant.stable_variant_id, self.scheme)
        return StreamInfo(
            stream_url=join_stream_url(base_uri, variant.uri),
            codec=variant.codecs or '',
            pssh=locator,
        )


class MediaManifestSource(DrmMetadataSource):
    """Legacy webplayback media playlist: the first segment's #EXT-X-KEY URI is the locator."""

    origin = WEBPLAYBACK

    def stream_info(self, data: Union[bytes, str], base_uri: str) -> StreamInfo:
        manifest = HLSParser.parse_media(data)
        first = manifest.segments[0] if manifest.segments else None
        if first is None or not first.key_uri:
            raise ExtractionKeyNotFound(message="First segment carries no #EXT-X-KEY URI")
        return StreamInfo(stream_url=base_uri, codec='', pssh=first.key_uri)


def drm_source_for(origin: str, codec_pattern: Optional[Pattern[str]] = None) -> DrmMetadataSource:
    match origin:
        case 'enhanced_hls':
            return MasterManifestSource(codec_pattern)
        case 'webplayback':
            return MediaManifestSource()
        case _:
            raise ValueError(f"Unknown manifest origin: {origin}")
