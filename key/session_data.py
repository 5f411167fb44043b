import base64
import binascii
from typing import Any, Iterable, Mapping, Optional

import orjson

from lib.mux.parse_hls import MasterManifest
from static.color import Color
from static.errors import BlockNotFound, EncodingError, ExtractionKeyNotFound, NotInline, VariantUnknown
from unit.handle.handle_log import setup_logging


logger = setup_logging('session_data', 'aquamarine')


# DATA-ID values of the two #EXT-X-SESSION-DATA blocks in an enhanced HLS master playlist
ASSET_METADATA_ID: str = 'com.apple.hls.audioAssetMetadata'
SESSION_KEY_INFO_ID: str = 'com.apple.hls.AudioSessionKeyInfo'

SESSION_KEY_IDS_FIELD: str = 'AUDIO-SESSION-KEY-IDS'
LOCATOR_FIELDS: tuple[str, ...] = ('URI', 'locator')


class DrmScheme:
    WIDEVINE: str = 'urn:uuid:edef8ba9-79d6-4ace-a3c8-27dcd51d21ed'
    PLAYREADY: str = 'com.microsoft.playready'
    FAIRPLAY: str = 'com.apple.streamingkeydelivery'


# Key id "1" maps to a descriptor that is never the track's content key.
# TODO: confirm the meaning of key id "1" against the key-system documentation.
EXCLUDED_KEY_ID: str = '1'


def decode_block_value(value: str, block_id: str = '') -> Any:
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise EncodingError(f"Session data {block_id} VALUE is not valid base64: {e}") from e
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise EncodingError(f"Session data {block_id} VALUE is not valid JSON: {e}") from e


def extract_block(manifest: MasterManifest, block_id: str) -> Any:
    """
    Decode the session data block whose DATA-ID equals block_id.

    The block must carry an inline VALUE; a URI-only block is not fetched.
    Returns the JSON value behind the base64 payload.
    """
    block = next((b for b in manifest.metadata_blocks if b.data_id == block_id), None)
    if block is None:
        raise BlockNotFound(block_id)
    if not block.is_inline:
        raise NotInline(block_id, block.uri)
    return decode_block_value(block.value, block_id)


def resolve_key_ids(session_key_index: Mapping[str, Any], variant_id: Optional[str]) -> list[str]:
    if not isinstance(session_key_index, Mapping) or variant_id not in session_key_index:
        raise VariantUnknown(variant_id)
    entry = session_key_index[variant_id]
    # audioAssetMetadata nests the list under AUDIO-SESSION-KEY-IDS
    if isinstance(entry, Mapping):
        entry = entry.get(SESSION_KEY_IDS_FIELD)
    if not isinstance(entry, list):
        raise VariantUnknown(variant_id)
    return [str(key_id) for key_id in entry]


def _descriptor_locator(descriptor: Any) -> Optional[str]:
    if not isinstance(descriptor, Mapping):
        return None
    for name in LOCATOR_FIELDS:
        locator = descriptor.get(name)
        if isinstance(locator, str) and locator:
            return locator
    return None


def resolve_identifier(
    key_descriptor_index: Mapping[str, Any],
    key_ids: Iterable[str],
    scheme: str = DrmScheme.WIDEVINE,
) -> str:
    """Return the locator of the first key id with a descriptor for scheme, skipping EXCLUDED_KEY_ID."""
    key_ids = list(key_ids)
    if isinstance(key_descriptor_index, Mapping):
        for key_id in key_ids:
            if key_id == EXCLUDED_KEY_ID:
                continue
            key_info = key_descriptor_index.get(key_id)
            if not isinstance(key_info, Mapping):
                continue
            locator = _descriptor_locator(key_info.get(scheme))
            if locator is not None:
                logger.debug(f"{Color.fg('light_gray')}Key id {Color.fg('gold')}{key_id}{Color.reset()} -> {locator}")
                return locator
    raise ExtractionKeyNotFound(key_ids, f"No {scheme} descriptor among key ids: {key_ids}")


class SessionKeyInfo:
    """Both decoded session data blocks of one master playlist."""

    def __init__(self, manifest: MasterManifest):
        self.asset_metadata: Any = extract_block(manifest, ASSET_METADATA_ID)
        self.key_descriptors: Any = extract_block(manifest, SESSION_KEY_INFO_ID)

    def key_ids(self, variant_id: Optional[str]) -> list[str]:
        return resolve_key_ids(self.asset_metadata, variant_id)

    def identifier(self, variant_id: Optional[str], scheme: str = DrmScheme.WIDEVINE) -> str:
        return resolve_identifier(self.key_descriptors, self.key_ids(variant_id), scheme)

