import asyncio
import copy
import re
import sys
from functools import lru_cache
from pathlib import Path
from typing import Any

import aiofiles
import yaml

from static.color import Color
from static.route import Route
from unit.handle.handle_log import setup_logging


logger = setup_logging('load_yaml_config', 'fresh_chartreuse')


YAML_PATH: Path = Route().YAML_path


DEFAULT_UA = 'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:95.0) Gecko/20100101 Firefox/95.0'
DEFAULT_TIMEOUT: float = 13.0

DEFAULT_CONFIG: dict[str, Any] = {
    'headers': {'User-Agent': DEFAULT_UA},
    'AppleMusic': {'media-user-token': '', 'storefront': 'us', 'language': 'en-US', 'codec': ''},
    'CDM': {'widevine': 'device.wvd'},
    'License': {'timeout': DEFAULT_TIMEOUT},
    'logging': {'level': 'INFO', 'format': '%(asctime)s [%(levelname)s] [%(name)s] %(message)s', 'file': True},
}


class ConfigLoader:
    @classmethod
    @lru_cache(maxsize=1)
    def load(cls, path: Path = YAML_PATH) -> dict:
        """Load, validate and cache the config; a missing file falls back to the defaults."""
        try:
            config = asyncio.run(cls._load_async(path))
        except FileNotFoundError:
            logger.warning(f"Config file not found: {Color.fg('gold')}{path}{Color.reset()}, using defaults")
            config = copy.deepcopy(DEFAULT_CONFIG)
        try:
            cls.check_cfg(config)
        except (TypeError, ValueError) as e:
            logger.error(f"{Color.fg('ruby')}Failed to load config: {e}{Color.reset()}")
            sys.exit(1)
        return config

    @staticmethod
    async def _load_async(path: Path) -> dict:
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            raw = await f.read()

        try:
            return yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ValueError(f"Failed to parse YAML: {e}")

    @staticmethod
    def check_cfg(config: dict) -> None:
        """Validate every section, filling soft errors with defaults."""
        if not isinstance(config, dict):
            raise TypeError("Config must be a dictionary")

        # 1. headers.User-Agent
        headers = config.get("headers") or {}
        if not isinstance(headers, dict):
            raise TypeError("headers must be a dict")
        ua = headers.get("User-Agent")
        if not ua or not isinstance(ua, str):
            ConfigLoader.print_warning('User-Agent', ua, DEFAULT_UA)
            headers["User-Agent"] = DEFAULT_UA
        config["headers"] = headers

        # 2. AppleMusic
        am = config.get("AppleMusic") or {}
        if not isinstance(am, dict):
            raise TypeError("AppleMusic must be a dict")
        token = am.get("media-user-token")
        if token is None:
            am["media-user-token"] = ""
        elif not isinstance(token, str):
            raise ValueError("AppleMusic.media-user-token must be a string")
        for key in ("storefront", "language"):
            value = am.get(key)
            if not value or not isinstance(value, str):
                fallback = DEFAULT_CONFIG['AppleMusic'][key]
                ConfigLoader.print_warning(f'AppleMusic.{key}', value, fallback)
                am[key] = fallback
        codec = am.get("codec") or ""
        if not isinstance(codec, str):
            raise ValueError("AppleMusic.codec must be a regex string")
        try:
            re.compile(codec)
        except re.error as e:
            raise ValueError(f"AppleMusic.codec is not a valid regex: {e}")
        am["codec"] = codec
        config["AppleMusic"] = am

        # 3. CDM
        cdm = config.get("CDM") or {}
        if not isinstance(cdm, dict):
            raise TypeError("CDM must be a dict")
        if not isinstance(cdm.get("widevine"), str):
            raise ValueError("CDM.widevine must be a string")
        if not cdm["widevine"].strip().lower().endswith(".wvd"):
            raise ValueError("CDM.widevine must be a wvd file")
        config["CDM"] = cdm

        # 4. License
        lic = config.get("License") or {}
        if not isinstance(lic, dict):
            raise TypeError("License must be a dict")
        timeout = lic.get("timeout")
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            ConfigLoader.print_warning('License.timeout', timeout, str(DEFAULT_TIMEOUT))
            lic["timeout"] = DEFAULT_TIMEOUT
        config["License"] = lic

        # 5. logging
        log = config.get("logging") or {}
        if not isinstance(log, dict):
            raise TypeError("logging must be a dict")
        if not isinstance(log.get("level"), str):
            raise ValueError("logging.level must be a string")
        if log["level"].lower() not in ("debug", "info", "warning", "error", "critical"):
            raise ValueError("logging.level must be one of debug, info, warning, error, critical")
        if not isinstance(log.get("format"), str):
            raise ValueError("logging.format must be a string")
        config["logging"] = log

    @staticmethod
    def print_warning(invaild_message: str, invaild_value: Any, correct_message: str) -> None:
        logger.warning(
            f"Unsupported value {Color.bg('ruby')}{invaild_message}{Color.reset()}"
            f"{Color.fg('gold')} in config: "
            f"{Color.fg('ruby')}{invaild_value} {Color.reset()}"
            f"{Color.fg('dove')}= {Color.reset()}"
            f"{Color.fg('ruby')}{type(invaild_value)}{Color.reset()}"
            f"{Color.fg('gold')} Try using "
            f"{Color.fg('red')}{correct_message} {Color.reset()}"
            f"{Color.fg('gold')}to continue ...{Color.reset()}"
        )


CFG = ConfigLoader.load()
