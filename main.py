import asyncio
import sys
from typing import List, Optional, Tuple, Union

import click
import orjson
import rich.traceback
from rich.console import Console
from rich.table import Table

from lib import wv_device_path
from static.color import Color
from static.errors import AmdlError
from unit.handle.handle_log import setup_logging
from unit.http.request_apple_music_api import AppleMusicAPIClient
from unit.media.track_key import ResolvedTrack, TrackKeyResolver
from WVD.widevine import WidevineDRM


rich.traceback.install()


logger = setup_logging('main', 'orange')


def render_table(results: List[Tuple[str, Union[ResolvedTrack, Exception]]]) -> Table:
    table = Table(title="Apple Music content keys", show_lines=True)
    table.add_column("Track", style="magenta", no_wrap=True)
    table.add_column("Codec", style="yellow")
    table.add_column("Stream URL", overflow="fold")
    table.add_column("PSSH", overflow="fold")
    table.add_column("KID:KEY", style="green", overflow="fold")
    for track_id, result in results:
        if isinstance(result, ResolvedTrack):
            info = result.stream_info
            table.add_row(track_id, info.codec or "-", info.stream_url, info.pssh, str(result.content_key))
        else:
            table.add_row(track_id, "-", "-", "-", f"[red]{type(result).__name__}: {result}[/red]")
    return table


def render_json(results: List[Tuple[str, Union[ResolvedTrack, Exception]]]) -> str:
    rows = []
    for track_id, result in results:
        if isinstance(result, ResolvedTrack):
            rows.append(result.to_dict())
        else:
            rows.append({"track_id": track_id, "error": type(result).__name__, "message": str(result)})
    return orjson.dumps(rows, option=orjson.OPT_INDENT_2).decode("utf-8")


async def run(track_ids: Tuple[str, ...], token: Optional[str]) -> List[Tuple[str, Union[ResolvedTrack, Exception]]]:
    drm = WidevineDRM(wv_device_path)
    async with AppleMusicAPIClient(token=token) as api:
        await api.init()
        resolver = TrackKeyResolver(api, drm)
        results = await resolver.resolve_many(track_ids)
    return list(zip(track_ids, results))


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("track_ids", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON instead of a table.")
@click.option("--token", default=None, help="Developer bearer token; scraped from the web player when omitted.")
def cli(track_ids: Tuple[str, ...], as_json: bool, token: Optional[str]) -> None:
    """Resolve the stream locator and Widevine content key for Apple Music TRACK_IDS."""
    try:
        results = asyncio.run(run(track_ids, token))
    except FileNotFoundError as e:
        logger.error(f"{Color.fg('tomato')}{e}{Color.reset()} put the .wvd file under key/drm/device/")
        sys.exit(2)
    except AmdlError as e:
        logger.error(f"Init failed: {Color.fg('light_gray')}{e}{Color.reset()}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info(f"Program interrupted: {Color.fg('light_gray')}User canceled{Color.reset()}")
        sys.exit(130)

    if as_json:
        click.echo(render_json(results))
    else:
        Console().print(render_table(results))
    if any(not isinstance(result, ResolvedTrack) for _, result in results):
        sys.exit(1)


if __name__ == '__main__':
    cli()
