"""
End-to-end track resolution with mocked catalog, manifest and license endpoints.
"""

import asyncio
import base64
from typing import Dict, List

import httpx
import orjson

from key.license_exchange import LICENSE_API_URL
from key.pssh import build
from static.errors import NetworkError, ServerRejected
from unit.http.request_apple_music_api import WEBPLAYBACK_API_URL, AppleMusicAPIClient
from unit.media.track_key import ResolvedTrack, TrackKeyResolver
from tests.fakes import CONTENT_KEY, KEY_LOCATOR, FakeDrm, media_manifest, simple_master


MASTER_URL = 'https://aod.itunes.apple.com/itunes-assets/HLSMusic/x/P1_default.m3u8'
MEDIA_URL = 'https://aod.itunes.apple.com/itunes-assets/Music/x/ctrp.m3u8'


class FakeAppleMusic:
    """Routes catalog, webPlayback, manifest and license requests"""

    def __init__(self, rejected_tracks=(), redirecting_tracks=(), license_delay: float = 0.0) -> None:
        self.songs: Dict[str, dict] = {
            '100': {'id': '100', 'attributes': {'extendedAssetUrls': {'enhancedHls': MASTER_URL}}},
            '200': {'id': '200', 'attributes': {'extendedAssetUrls': {}}},
        }
        self.rejected_tracks = set(rejected_tracks)
        self.redirecting_tracks = set(redirecting_tracks)
        self.license_delay = license_delay
        self.license_requests: List[dict] = []

    def add_song(self, song_id: str, attributes=None) -> None:
        if attributes is None:
            attributes = {'extendedAssetUrls': {'enhancedHls': MASTER_URL}}
        self.songs[song_id] = {'id': song_id, 'attributes': attributes}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.url.host == 'amp-api.music.apple.com':
            song_id = request.url.path.rsplit('/', 1)[-1]
            if song_id in self.redirecting_tracks:
                return httpx.Response(302, headers={'location': url})
            if song_id not in self.songs:
                return httpx.Response(404, json={'errors': []})
            return httpx.Response(200, json={'data': [self.songs[song_id]]})
        if url == MASTER_URL:
            return httpx.Response(200, content=simple_master())
        if url == MEDIA_URL:
            return httpx.Response(200, content=media_manifest())
        if url == WEBPLAYBACK_API_URL:
            return httpx.Response(200, json={'songList': [{'assets': [{'flavor': '28:ctrp256', 'URL': MEDIA_URL}]}]})
        if url == LICENSE_API_URL:
            payload = orjson.loads(request.content)
            self.license_requests.append(payload)
            if self.license_delay:
                await asyncio.sleep(self.license_delay)
            if payload['adamId'] in self.rejected_tracks:
                return httpx.Response(403, json={'error': 'forbidden'})
            return httpx.Response(200, json={'license': base64.b64encode(b'license').decode()})
        return httpx.Response(404)


def resolver_for(server: FakeAppleMusic, drm: FakeDrm) -> TrackKeyResolver:
    api = AppleMusicAPIClient(media_user_token='media-token', token='eyJh.test', transport=httpx.MockTransport(server))
    return TrackKeyResolver(api, drm, codec_pattern=None)


def run(resolver: TrackKeyResolver, coro):
    async def go():
        async with resolver.api:
            return await coro
    return asyncio.run(go())


class TestResolve:

    def test_enhanced_hls_track(self):
        server, drm = FakeAppleMusic(), FakeDrm()
        resolver = resolver_for(server, drm)
        track = run(resolver, resolver.resolve('100'))

        assert isinstance(track, ResolvedTrack)
        assert track.stream_info.stream_url == 'https://aod.itunes.apple.com/itunes-assets/HLSMusic/x/P1_A256.m3u8'
        assert track.stream_info.codec == 'mp4a.40.2'
        assert track.stream_info.pssh == KEY_LOCATOR
        assert track.content_key.key == CONTENT_KEY
        assert drm.sessions[0].headers == [build(KEY_LOCATOR)]
        assert server.license_requests[0]['uri'] == KEY_LOCATOR
        assert server.license_requests[0]['adamId'] == '100'

    def test_webplayback_fallback(self):
        server, drm = FakeAppleMusic(), FakeDrm()
        resolver = resolver_for(server, drm)
        track = run(resolver, resolver.resolve('200'))

        assert track.stream_info.stream_url == MEDIA_URL
        assert track.stream_info.codec == ''
        assert track.stream_info.pssh == KEY_LOCATOR
        assert track.to_dict()['key'] == CONTENT_KEY.hex()


class TestResolveMany:
    """Independent tracks, independent sessions"""

    def test_failure_is_isolated(self):
        server, drm = FakeAppleMusic(rejected_tracks={'200'}), FakeDrm()
        resolver = resolver_for(server, drm)
        results = run(resolver, resolver.resolve_many(['100', '200']))

        assert isinstance(results[0], ResolvedTrack)
        assert isinstance(results[1], ServerRejected)
        assert results[1].status == 403
        assert len(drm.sessions) == 2
        assert all(session.closed == 1 for session in drm.sessions)

    def test_request_error_is_isolated(self):
        """A redirect loop on one song fails that slot only"""
        server, drm = FakeAppleMusic(redirecting_tracks={'200'}), FakeDrm()
        resolver = resolver_for(server, drm)
        results = run(resolver, resolver.resolve_many(['100', '200']))

        assert isinstance(results[0], ResolvedTrack)
        assert isinstance(results[1], NetworkError)
        assert isinstance(results[1].__cause__, httpx.TooManyRedirects)

    def test_unexpected_error_is_returned_in_its_slot(self):
        """A malformed catalog entry does not abort the other tracks"""
        server, drm = FakeAppleMusic(), FakeDrm()
        server.songs['300'] = {'id': '300', 'attributes': None}
        resolver = resolver_for(server, drm)
        results = run(resolver, resolver.resolve_many(['300', '100']))

        assert isinstance(results[0], AttributeError)
        assert isinstance(results[1], ResolvedTrack)
        assert results[1].content_key.key == CONTENT_KEY

    def test_sessions_stay_within_cdm_limit(self):
        """More tracks than the CDM allows sessions still all resolve"""
        server, drm = FakeAppleMusic(license_delay=0.01), FakeDrm()
        track_ids = [str(1000 + i) for i in range(20)]
        for track_id in track_ids:
            server.add_song(track_id)
        resolver = resolver_for(server, drm)
        results = run(resolver, resolver.resolve_many(track_ids))

        assert all(isinstance(result, ResolvedTrack) for result in results)
        assert [result.track_id for result in results] == track_ids
        assert len(drm.sessions) == 20
        assert drm.peak <= drm.max_sessions == 16
        assert drm.active == 0
