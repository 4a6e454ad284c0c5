"""Error taxonomy shared by the server routes and the stream client.

Every error carries a stable ``code`` so the caller can tell "no data will
ever arrive" (raised before streaming) from "some data arrived, then it
broke" (delivered in-band as an ``error`` event).
"""

from __future__ import annotations


class TariffLensError(Exception):
    """Base class — ``code`` is the taxonomy value sent to clients."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class MalformedRequest(TariffLensError):
    """Caller input failed a precondition (missing query/ticker, empty excerpts)."""

    code = "malformed_request"
    status_code = 400


class MissingConfiguration(TariffLensError):
    """A required credential is absent.  Never retried."""

    code = "missing_configuration"
    status_code = 500


class UpstreamFailure(TariffLensError):
    """The search or generation provider returned a non-success status or bad body."""

    code = "upstream_failure"
    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status


class StreamInterrupted(TariffLensError):
    """The generation stream broke after content started arriving."""

    code = "stream_interrupted"


class StreamTimeout(TariffLensError):
    """The client-side read exceeded its wall-clock budget."""

    code = "timeout"
    status_code = 504

    def __init__(self, message: str = "The summary took too long to generate. Please try again.") -> None:
        super().__init__(message)


_BY_CODE = {
    cls.code: cls
    for cls in (MalformedRequest, MissingConfiguration, UpstreamFailure, StreamInterrupted, StreamTimeout)
}


def error_from_payload(status_code: int, payload: object) -> TariffLensError:
    """Rebuild the typed error from a synchronous ``{"error", "code"}`` response body."""
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        cls = _BY_CODE.get(payload.get("code"))
        if cls is UpstreamFailure or cls is None:
            return UpstreamFailure(payload["error"], upstream_status=status_code)
        return cls(payload["error"])
    return UpstreamFailure(f"Request failed (HTTP {status_code})", upstream_status=status_code)
