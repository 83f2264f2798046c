"""Error taxonomy shared by the fetchers, the walker and the orchestrator.

Only the orchestrator decides what a caller sees; lower layers raise one of
these with enough context (import path, stage) to diagnose the failure.
"""


class DocError(Exception):
    """Base class for all documentation pipeline failures."""


class NotModifiedError(DocError):
    """The resolved revision equals the saved one; nothing to fetch."""

    def __init__(self, revision: str = ""):
        self.revision = revision
        super().__init__(f"package not modified (revision {revision})")


class NotFoundError(DocError):
    """The path does not exist at the hosting service, or cannot be mapped."""


class NoSourceFilesError(NotFoundError):
    """The directory holds neither Go files nor sub-packages."""

    def __init__(self, import_path: str = ""):
        self.import_path = import_path
        super().__init__(f"no Go source files in {import_path or 'directory'}")


class RemoteError(DocError):
    """Transport or HTTP failure talking to a hosting service."""

    def __init__(self, host: str, cause: object):
        self.host = host
        self.cause = cause
        super().__init__(f"{host}: {cause}")


class InvalidRemotePathError(DocError):
    """The input cannot be a remote import path at all."""

    def __init__(self, import_path: str):
        self.import_path = import_path
        super().__init__(f"invalid remote path: {import_path!r}")


class FetchTimeoutError(DocError):
    """The fetch did not finish before the orchestrator's deadline."""

    def __init__(self, import_path: str, timeout: float):
        self.import_path = import_path
        self.timeout = timeout
        super().__init__(f"fetch of {import_path} timed out after {timeout}s")


class WalkError(DocError):
    """A source file could not be parsed into the documentation model."""
