import asyncio
from dataclasses import dataclass
from re import Pattern
from typing import Any, Dict, Iterable, List, Optional, Union

from key.license_exchange import LicenseExchange
from key.pssh import build
from lib import codec_pattern as cfg_codec_pattern
from static.color import Color
from static.ContentKey import ContentKey
from static.errors import AmdlError, ExtractionKeyNotFound
from static.StreamInfo import StreamInfo
from unit.handle.handle_log import setup_logging
from unit.http.request_apple_music_api import AppleMusicAPIClient, webplayback_asset_url
from unit.media.drm_source import ENHANCED_HLS, WEBPLAYBACK, drm_source_for
from WVD.widevine import DrmSessionProvider


logger = setup_logging('track_key', 'turquoise')


@dataclass(frozen=True)
class ResolvedTrack:
    track_id: str
    stream_info: StreamInfo
    content_key: ContentKey

    def to_dict(self) -> Dict[str, Any]:
        return {
            "track_id": self.track_id,
            **self.stream_info.to_dict(),
            "kid": self.content_key.kid,
            "key": self.content_key.hex,
        }


class TrackKeyResolver:
    """track id -> manifest -> key locator -> Widevine header -> license -> content key"""

    def __init__(
        self,
        api: AppleMusicAPIClient,
        drm: DrmSessionProvider,
        codec_pattern: Optional[Pattern[str]] = cfg_codec_pattern,
    ) -> None:
        self.api = api
        self.drm = drm
        self.codec_pattern = codec_pattern
        # the CDM refuses to open more sessions than this at once
        self._sessions = asyncio.Semaphore(drm.max_sessions)

    async def stream_info(self, track_id: str) -> StreamInfo:
        song = await self.api.get_song(track_id)
        enhanced_hls = (
            song.get('attributes', {})
            .get('extendedAssetUrls', {})
            .get('enhancedHls')
        )
        if enhanced_hls:
            logger.debug(f"{track_id} enhancedHls {enhanced_hls}")
            data = await self.api.fetch_manifest(enhanced_hls)
            return drm_source_for(ENHANCED_HLS, self.codec_pattern).stream_info(data, enhanced_hls)

        logger.info(
            f"{Color.fg('light_gray')}No enhancedHls for {Color.fg('plum')}{track_id}{Color.reset()}"
            f"{Color.fg('light_gray')}, falling back to webPlayback{Color.reset()}"
        )
        webplayback = await self.api.get_webplayback(track_id)
        asset_url = webplayback_asset_url(webplayback)
        if asset_url is None:
            raise ExtractionKeyNotFound(message=f"No webPlayback asset for {track_id}")
        data = await self.api.fetch_manifest(asset_url)
        return drm_source_for(WEBPLAYBACK).stream_info(data, asset_url)

    async def resolve(self, track_id: str) -> ResolvedTrack:
        info = await self.stream_info(track_id)
        logger.info(
            f"{Color.fg('plum')}{track_id}{Color.reset()} "
            f"codec {Color.fg('gold')}{info.codec or '-'}{Color.reset()}"
        )
        logger.debug(info.to_json())
        header: bytes = build(info.pssh)
        exchange = LicenseExchange(self.drm, self.api.client, track_id, info.pssh)
        async with self._sessions:
            content_key = await exchange.run(header)
        return ResolvedTrack(track_id=track_id, stream_info=info, content_key=content_key)

    async def resolve_many(self, track_ids: Iterable[str]) -> List[Union[ResolvedTrack, Exception]]:
        """Each track gets its own exchange; a failure is returned in its slot, not raised."""
        track_ids = list(track_ids)
        results = await asyncio.gather(
            *(self.resolve(track_id) for track_id in track_ids),
            return_exceptions=True,
        )
        for track_id, result in zip(track_ids, results):
            if isinstance(result, AmdlError):
                logger.error(
                    f"{Color.fg('plum')}{track_id}{Color.reset()} "
                    f"{Color.bg('maroon')}{type(result).__name__}{Color.reset()} {result}"
                )
            elif isinstance(result, Exception):
                logger.error(
                    f"{Color.fg('plum')}{track_id}{Color.reset()} "
                    f"{Color.bg('maroon')}Unexpected {type(result).__name__}{Color.reset()} {result!r}"
                )
            elif isinstance(result, BaseException):
                raise result
        return results
