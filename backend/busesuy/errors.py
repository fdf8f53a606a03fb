"""Error taxonomy for the live-arrival engine.

Only AuthFailure and ProviderError ever reach a caller. UpstreamDataUnavailable
is raised inside payload decoders and converted to an empty result at the
component boundary.
"""


class AuthFailure(Exception):
    """The STM token endpoint could not issue a token."""


class UpstreamDataUnavailable(Exception):
    """An upstream data endpoint answered with an error or a malformed payload."""


class ProviderError(Exception):
    """The directions provider failed or returned an unusable payload."""

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.status_code = status_code
