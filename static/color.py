from types import MappingProxyType


# xterm 256-color indices, keyed by the names passed to setup_logging and Color.fg/bg
PALETTE = MappingProxyType({
    "red": 1,
    "maroon": 1,
    "green": 2,
    "navy": 18,
    "fern": 34,
    "fresh_chartreuse": 35,
    "dark_honey": 43,
    "turquoise": 80,
    "aquamarine": 86,
    "periwinkle": 111,
    "ruby": 161,
    "plum": 176,
    "honeydew": 194,
    "tomato": 203,
    "orange": 208,
    "gold": 220,
    "dove": 241,
    "aluminum": 242,
    "light_gray": 250,
})


class Color:
    __slots__ = ()
    FG: str = "\033[38;5;{}m"
    BG: str = "\033[48;5;{}m"
    RESET: str = "\033[0m"
    BOLD: str = "\033[1m"

    @staticmethod
    def _sgr(template: str, name: str) -> str:
        code = PALETTE.get(name.lower())
        return template.format(code) if code is not None else ""

    @classmethod
    def fg(cls, name: str) -> str:
        return cls._sgr(cls.FG, name)

    @classmethod
    def bg(cls, name: str) -> str:
        return cls._sgr(cls.BG, name)

    @classmethod
    def bold(cls) -> str:
        return cls.BOLD

    @classmethod
    def reset(cls) -> str:
        return cls.RESET
