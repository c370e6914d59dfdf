"""Error kinds shared by the gateways, the dispatcher and the CLI."""


class StreamTuiError(Exception):
    """Base class for every error StreamTUI raises on purpose."""

    kind = "Error"

    def __init__(self, detail: str = ""):
        super().__init__(detail or self.kind)
        self.detail = detail or self.kind


class TransportError(StreamTuiError):
    """Network or subprocess I/O failure."""

    kind = "Transport"

    def __init__(self, cause: object):
        super().__init__(str(cause) or type(cause).__name__)
        self.cause = cause


class ProtocolError(StreamTuiError):
    """Malformed response from a provider or helper process."""

    kind = "Protocol"


class NotFound(StreamTuiError):
    kind = "NotFound"


class RateLimited(StreamTuiError):
    kind = "RateLimited"


class ServerError(StreamTuiError):
    kind = "ServerError"

    def __init__(self, code: int):
        super().__init__(f"server returned HTTP {code}")
        self.code = code


class AuthFailed(StreamTuiError):
    kind = "AuthFailed"


class TorrentFailed(StreamTuiError):
    """The torrent helper never produced a stream URL."""

    kind = "TorrentFailed"


class PlayerUnavailable(StreamTuiError):
    kind = "PlayerUnavailable"

    def __init__(self, name: str):
        super().__init__(f"{name} not found. Install it and make sure it is on your PATH.")
        self.name = name


class Unsupported(StreamTuiError):
    """Transport command that the current playback target cannot perform."""

    kind = "Unsupported"


class InvalidArgs(StreamTuiError):
    kind = "InvalidArgs"


class DeviceNotFound(StreamTuiError):
    kind = "DeviceNotFound"


class NoSession(StreamTuiError):
    kind = "NoSession"

    def __init__(self, detail: str = "no active playback session"):
        super().__init__(detail)
