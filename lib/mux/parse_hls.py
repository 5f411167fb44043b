from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

import m3u8
from m3u8.parser import ParseError as M3U8ParseError

from static.color import Color
from static.errors import ParseError
from unit.handle.handle_log import setup_logging


logger = setup_logging('parse_hls', 'periwinkle')


EXTM3U: str = '#EXTM3U'
STREAM_INF: str = '#EXT-X-STREAM-INF'


@dataclass(frozen=True)
class ManifestVariant:
    uri: str
    codecs: Optional[str]
    stable_variant_id: Optional[str]
    bandwidth: Optional[int] = None
    average_bandwidth: Optional[int] = None
    audio: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class MetadataBlock:
    """One #EXT-X-SESSION-DATA entry; either an inline base64 VALUE or a URI reference."""

    data_id: str
    value: Optional[str] = None
    uri: Optional[str] = None
    language: Optional[str] = None

    @property
    def is_inline(self) -> bool:
        return self.value is not None


@dataclass(frozen=True)
class MasterManifest:
    variants: tuple[ManifestVariant, ...]
    metadata_blocks: tuple[MetadataBlock, ...]


@dataclass(frozen=True)
class MediaSegment:
    uri: str
    duration: float
    key_uri: Optional[str] = None
    key_method: Optional[str] = None
    key_format: Optional[str] = None


@dataclass(frozen=True)
class MediaManifest:
    segments: tuple[MediaSegment, ...]


def _unquote(value: Any) -> Any:
    if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def join_stream_url(base_uri: str, uri: str) -> str:
    """Append a variant uri to the base uri cut after its last '/'."""
    index = base_uri.rfind('/')
    base = base_uri[:index + 1] if index != -1 else base_uri
    return f"{base}{uri}"


class HLSParser:
    """HLS master/media playlist parser, pure functions over manifest bytes."""

    @staticmethod
    def _decode(data: Union[bytes, str]) -> str:
        if isinstance(data, (bytes, bytearray)):
            try:
                text = bytes(data).decode('utf-8-sig')
            except UnicodeDecodeError as e:
                raise ParseError(f"Manifest is not valid UTF-8: {e}") from e
        elif isinstance(data, str):
            text = data.lstrip("\ufeff")
        else:
            raise ParseError(f"Manifest must be bytes or str, got {type(data).__name__}")
        if not text.lstrip().startswith(EXTM3U):
            raise ParseError(f"Manifest does not start with {EXTM3U}")
        return text

    @staticmethod
    def _parse(text: str) -> dict[str, Any]:
        try:
            return m3u8.parse(text)
        except (M3U8ParseError, ValueError, IndexError, KeyError) as e:
            raise ParseError(f"Malformed playlist: {e}") from e

    @staticmethod
    def _make_variant(playlist: dict[str, Any]) -> ManifestVariant:
        uri = playlist.get('uri')
        if not uri:
            raise ParseError(f"{STREAM_INF} without a variant uri")
        stream_info = {k: _unquote(v) for k, v in (playlist.get('stream_info') or {}).items()}
        stable_variant_id = stream_info.get('stable_variant_id')
        return ManifestVariant(
            uri=uri,
            codecs=stream_info.get('codecs'),
            stable_variant_id=str(stable_variant_id) if stable_variant_id is not None else None,
            bandwidth=_as_int(stream_info.get('bandwidth')),
            average_bandwidth=_as_int(stream_info.get('average_bandwidth')),
            audio=stream_info.get('audio'),
            attributes=MappingProxyType(stream_info),
        )

    @classmethod
    def parse_master(cls, data: Union[bytes, str]) -> MasterManifest:
        text = cls._decode(data)
        if not any(line.lstrip().startswith(STREAM_INF) for line in text.splitlines()):
            raise ParseError(f"Not a master playlist: no {STREAM_INF} tag")
        parsed = cls._parse(text)

        variants = tuple(cls._make_variant(p) for p in parsed.get('playlists', []))
        if not variants:
            raise ParseError("Master playlist has no variants")

        blocks: list[MetadataBlock] = []
        for session_data in parsed.get('session_data', []):
            data_id = session_data.get('data_id')
            if not data_id:
                raise ParseError("#EXT-X-SESSION-DATA without DATA-ID")
            blocks.append(MetadataBlock(
                data_id=data_id,
                value=session_data.get('value'),
                uri=session_data.get('uri'),
                language=session_data.get('language'),
            ))

        logger.debug(
            f"{Color.fg('light_gray')}Parsed master playlist: "
            f"{Color.fg('gold')}{len(variants)}{Color.reset()} variants, "
            f"{Color.fg('gold')}{len(blocks)}{Color.reset()} session data blocks"
        )
        return MasterManifest(variants=variants, metadata_blocks=tuple(blocks))

    @classmethod
    def parse_media(cls, data: Union[bytes, str]) -> MediaManifest:
        text = cls._decode(data)
        if any(line.lstrip().startswith(STREAM_INF) for line in text.splitlines()):
            raise ParseError("Expected a media playlist, got a master playlist")
        parsed = cls._parse(text)

        segments: list[MediaSegment] = []
        for segment in parsed.get('segments', []):
            key = segment.get('key') or {}
            segments.append(MediaSegment(
                uri=segment.get('uri') or '',
                duration=float(segment.get('duration') or 0.0),
                key_uri=key.get('uri'),
                key_method=key.get('method'),
                key_format=key.get('keyformat'),
            ))
        return MediaManifest(segments=tuple(segments))


parse_master = HLSParser.parse_master
parse_media = HLSParser.parse_media
