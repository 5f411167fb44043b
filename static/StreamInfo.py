from dataclasses import dataclass
from typing import Any, Dict

import orjson


@dataclass(frozen=True)
class StreamInfo:
    stream_url: str
    codec: str
    # key locator: the Widevine descriptor URI or the #EXT-X-KEY URI of a media playlist
    pssh: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stream_url": self.stream_url,
            "codec": self.codec,
            "pssh": self.pssh,
        }

    def to_json(self) -> str:
        """Convert to JSON string with pretty formatting"""
        return orjson.dumps(self.to_dict(), option=orjson.OPT_INDENT_2).decode("utf-8")

    def __str__(self) -> str:
        return f"StreamInfo(codec={self.codec or '-'}, stream_url={self.stream_url})"
