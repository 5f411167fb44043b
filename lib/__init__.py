import re
from pathlib import Path
from typing import Optional

from lib.load_yaml_config import CFG, ConfigLoader, DEFAULT_TIMEOUT
from static.route import Route
from unit.handle.handle_log import setup_logging


logger = setup_logging('lib.__init__', 'fern')


def get_license_timeout(yaml_container=CFG['License']['timeout']) -> float:
    try:
        return float(yaml_container)
    except (TypeError, ValueError):
        ConfigLoader.print_warning('License.timeout', yaml_container, str(DEFAULT_TIMEOUT))
        return DEFAULT_TIMEOUT
license_timeout = get_license_timeout()


def get_codec_pattern(yaml_container=CFG['AppleMusic']['codec']) -> Optional[re.Pattern[str]]:
    if not yaml_container:
        return None
    return re.compile(yaml_container)
codec_pattern = get_codec_pattern()


def get_wv_device_path(yaml_container=CFG['CDM']['widevine']) -> Path:
    return Route().device_path(yaml_container.strip())
wv_device_path = get_wv_device_path()
