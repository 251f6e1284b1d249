"""Exception types raised by the regions updater."""


class RegionsUpdaterError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(RegionsUpdaterError):
    """Raised when the provided options are not valid."""


class ClusterUnavailableError(RegionsUpdaterError):
    """Raised when no Kubernetes configuration could be loaded."""


class FetchError(RegionsUpdaterError):
    """Raised when the list of regions could not be retrieved."""


class FetchNetworkError(FetchError):
    """Raised on connection failures, timeouts and error status codes."""


class FetchDecodeError(FetchError):
    """Raised when the response body is not a list of regions."""


class ProbeError(RegionsUpdaterError):
    """Raised when a server could not be connected to."""


class ProbeTimeoutError(ProbeError):
    """Raised when a server took longer than the maximum latency to answer."""


class PersistError(RegionsUpdaterError):
    """Raised when the regions could not be written to the cluster."""


class PersistCreateError(PersistError):
    """Raised when the ConfigMap did not exist and could not be created."""


class PersistConflictError(PersistError):
    """Raised when the ConfigMap was modified by someone else meanwhile."""
