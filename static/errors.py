from typing import Optional


class AmdlError(Exception):
    """Base class for every failure raised while resolving a track's stream and key."""


class ParseError(AmdlError):
    """Manifest bytes do not follow the playlist grammar."""


class EncodingError(AmdlError):
    """Base64, JSON or binary payload could not be decoded."""


class NetworkError(AmdlError):
    """Transport-level failure (connection, TLS, timeout)."""


class ExtractionError(AmdlError):
    """DRM metadata could not be located in a parsed manifest."""


class BlockNotFound(ExtractionError):
    def __init__(self, block_id: str) -> None:
        self.block_id = block_id
        super().__init__(f"Session data block not found: {block_id}")


class NotInline(ExtractionError):
    def __init__(self, block_id: str, uri: Optional[str] = None) -> None:
        self.block_id = block_id
        self.uri = uri
        super().__init__(f"Session data block {block_id} carries a URI reference instead of an inline VALUE")


class VariantUnknown(ExtractionError):
    def __init__(self, variant_id: Optional[str]) -> None:
        self.variant_id = variant_id
        super().__init__(f"No session key ids for variant: {variant_id}")


class ExtractionKeyNotFound(ExtractionError):
    def __init__(self, key_ids: Optional[list[str]] = None, message: Optional[str] = None) -> None:
        self.key_ids = list(key_ids or [])
        super().__init__(message or f"No eligible key descriptor among key ids: {self.key_ids}")


class LicenseError(AmdlError):
    """License challenge/response exchange failed."""


class ChallengeBuildFailed(LicenseError):
    pass


class ServerRejected(LicenseError):
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self.body = body
        super().__init__(f"License server rejected the challenge: HTTP {status} {body[:200]}")


class ResponseParseFailed(LicenseError):
    pass


class LicenseKeyNotFound(LicenseError):
    pass


# ExtractionError.BlockNotFound / LicenseError.ServerRejected style access
ExtractionError.BlockNotFound = BlockNotFound
ExtractionError.NotInline = NotInline
ExtractionError.VariantUnknown = VariantUnknown
ExtractionError.KeyNotFound = ExtractionKeyNotFound
LicenseError.ChallengeBuildFailed = ChallengeBuildFailed
LicenseError.ServerRejected = ServerRejected
LicenseError.ResponseParseFailed = ResponseParseFailed
LicenseError.KeyNotFound = LicenseKeyNotFound


class DrmSessionError(AmdlError):
    """The DRM session capability rejected an operation."""


class InitError(AmdlError):
    """Catalog client bootstrap (token scrape, storefront lookup) failed."""
