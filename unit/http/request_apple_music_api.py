import asyncio
import random
import re
from typing import Any, Dict, Optional

import httpx
import orjson

from lib import license_timeout
from static.color import Color
from static.errors import InitError, NetworkError
from unit.handle.handle_log import setup_logging
from unit.http.user_agent import LANGUAGE, MEDIA_USER_TOKEN, STOREFRONT, USERAGENT


logger = setup_logging('request_apple_music_api', 'aluminum')


APPLE_MUSIC_HOMEPAGE_URL: str = 'https://beta.music.apple.com'
AMP_API_URL: str = 'https://amp-api.music.apple.com'
WEBPLAYBACK_API_URL: str = 'https://play.itunes.apple.com/WebObjects/MZPlay.woa/wa/webPlayback'
WEBPLAYBACK_FLAVOR: str = '28:ctrp256'

_INDEX_JS_RE = re.compile(r'(?<=index)(.*?)(?=\.js")')
_TOKEN_RE = re.compile(r'(?=eyJh)(.*?)(?=")')


class AppleMusicAPIClient:
    """
    Catalog/webplayback client for the amp-api and MZPlay endpoints.

    The underlying httpx.AsyncClient carries the bearer token and media-user-token,
    and is handed to LicenseExchange so license POSTs go out with the same headers.
    Only idempotent GETs are retried.
    """

    base_sleep: float = 0.25
    max_sleep: float = 2.0
    max_retries: int = 3
    retry_http_status: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    def __init__(
        self,
        media_user_token: str = MEDIA_USER_TOKEN,
        storefront: str = STOREFRONT,
        language: str = LANGUAGE,
        token: Optional[str] = None,
        timeout: float = license_timeout,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.media_user_token: str = media_user_token
        self.storefront: str = storefront
        self.language: str = language
        self.token: Optional[str] = token
        self.timeout: float = timeout
        self._transport: Optional[httpx.AsyncBaseTransport] = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {
            'user-agent': USERAGENT,
            'accept': 'application/json',
            'content-type': 'application/json',
            'origin': 'https://music.apple.com',
            'referer': 'https://music.apple.com/',
        }
        if self.media_user_token:
            headers['media-user-token'] = self.media_user_token
        if self.token:
            headers['authorization'] = f"Bearer {self.token}"
        return headers

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            if self._transport is not None:
                self._client = httpx.AsyncClient(
                    transport=self._transport,
                    headers=self._build_headers(),
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                )
            else:
                self._client = httpx.AsyncClient(
                    http2=True,
                    headers=self._build_headers(),
                    timeout=httpx.Timeout(self.timeout),
                    follow_redirects=True,
                )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AppleMusicAPIClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _send_request(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        attempt: int = 0
        last_error: Optional[Exception] = None
        while attempt < AppleMusicAPIClient.max_retries:
            try:
                response: httpx.Response = await self.client.get(url, params=params)
                if response.status_code not in AppleMusicAPIClient.retry_http_status:
                    return response
                logger.warning(
                    f"HTTP server error: {response.status_code}, "
                    f"retry {attempt + 1}/{AppleMusicAPIClient.max_retries}"
                )
                last_error = httpx.HTTPStatusError(
                    f"Retryable server error: {response.status_code}",
                    request=response.request,
                    response=response,
                )
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(f"Network exception, retry {attempt + 1}/{AppleMusicAPIClient.max_retries}: {e}")
                last_error = e
            except httpx.RequestError as e:
                raise NetworkError(f"GET {url} failed: {e!r}") from e
            attempt += 1
            if attempt < AppleMusicAPIClient.max_retries:
                sleep: float = min(AppleMusicAPIClient.max_sleep, AppleMusicAPIClient.base_sleep * (2 ** attempt))
                sleep *= (0.5 + random.random())
                await asyncio.sleep(sleep)
        logger.error(f"Retry exceeded for {Color.fg('periwinkle')}{url}{Color.reset()}")
        raise NetworkError(f"GET {url} failed after {AppleMusicAPIClient.max_retries} attempts: {last_error!r}")

    async def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = await self._send_request(url, params=params)
        if not response.is_success:
            logger.error(f"HTTP error for {url}: {Color.bg('gold')}{response}{Color.reset()}")
            raise NetworkError(f"GET {url} returned HTTP {response.status_code}")
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise NetworkError(f"GET {url} returned a non-JSON body") from e

    async def fetch_token(self) -> str:
        """Scrape the web player's bundled developer token."""
        homepage = await self._send_request(APPLE_MUSIC_HOMEPAGE_URL)
        index_js = _INDEX_JS_RE.search(homepage.text)
        if index_js is None:
            raise InitError('index.js reference not found on the Apple Music homepage')
        bundle = await self._send_request(f"{APPLE_MUSIC_HOMEPAGE_URL}/assets/index{index_js.group(1)}.js")
        token = _TOKEN_RE.search(bundle.text)
        if token is None:
            raise InitError('Developer token not found in the web player bundle')
        return token.group(1)

    async def init(self) -> None:
        if not self.media_user_token:
            raise InitError('AppleMusic.media-user-token is empty, set it in config/amdlconfig.yaml')
        if self.token is None:
            self.token = await self.fetch_token()
            logger.info(f"{Color.fg('light_gray')}Developer token acquired{Color.reset()}")
        self.client.headers['authorization'] = f"Bearer {self.token}"
        await self.init_storefront_language()

    async def init_storefront_language(self) -> None:
        data = await self._get_json(f"{AMP_API_URL}/v1/me/storefront")
        try:
            storefront = data['data'][0]
        except (KeyError, IndexError, TypeError) as e:
            raise InitError(f"Unexpected storefront response: {data}") from e
        self.storefront = storefront.get('id') or self.storefront
        self.language = storefront.get('attributes', {}).get('defaultLanguageTag') or self.language
        logger.info(
            f"Storefront {Color.fg('gold')}{self.storefront}{Color.reset()} "
            f"language {Color.fg('gold')}{self.language}{Color.reset()}"
        )

    async def get_song(self, song_id: str) -> Dict[str, Any]:
        data = await self._get_json(
            f"{AMP_API_URL}/v1/catalog/{self.storefront}/songs/{song_id}",
            params={'include': 'albums', 'extend': 'extendedAssetUrls'},
        )
        try:
            return data['data'][0]
        except (KeyError, IndexError, TypeError) as e:
            raise NetworkError(f"Song {song_id} not found in storefront {self.storefront}") from e

    async def get_webplayback(self, track_id: str) -> Dict[str, Any]:
        payload = {'salableAdamId': track_id, 'language': self.language}
        try:
            response = await self.client.post(WEBPLAYBACK_API_URL, content=orjson.dumps(payload))
        except httpx.RequestError as e:
            raise NetworkError(f"webPlayback for {track_id} failed: {e!r}") from e
        if not response.is_success:
            raise NetworkError(f"webPlayback for {track_id} returned HTTP {response.status_code}")
        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            raise NetworkError(f"webPlayback for {track_id} returned a non-JSON body") from e

    async def fetch_manifest(self, url: str) -> bytes:
        response = await self._send_request(url)
        if not response.is_success:
            raise NetworkError(f"Manifest {url} returned HTTP {response.status_code}")
        return response.content


def webplayback_asset_url(webplayback: Dict[str, Any], flavor: str = WEBPLAYBACK_FLAVOR) -> Optional[str]:
    for song in webplayback.get('songList', []):
        for asset in song.get('assets', []):
            if asset.get('flavor') == flavor:
                return asset.get('URL')
    return None
