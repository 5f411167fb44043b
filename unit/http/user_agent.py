import httpagentparser

from lib.load_yaml_config import CFG, DEFAULT_UA
from static.color import Color
from unit.handle.handle_log import setup_logging


logger = setup_logging('user_agent', 'green')


def is_user_agent(ua: str) -> bool:
    if not ua or not isinstance(ua, str):
        return False
    parsed = httpagentparser.detect(ua)
    return bool(parsed.get('platform') or parsed.get('browser'))


def get_useragent() -> str:
    USERAGENT = CFG['headers']['User-Agent']
    if not is_user_agent(USERAGENT):
        logger.warning(f"Unsupported User-Agent: {Color.bg('ruby')}{USERAGENT}{Color.fg('gold')}, try default setting to continue ...")
        USERAGENT = DEFAULT_UA
        logger.info(USERAGENT)
    return USERAGENT
USERAGENT = get_useragent()

MEDIA_USER_TOKEN: str = CFG['AppleMusic']['media-user-token']
STOREFRONT: str = CFG['AppleMusic']['storefront']
LANGUAGE: str = CFG['AppleMusic']['language']
