# Base exception
class BackrunnerError(Exception):
    pass


# Module-level exceptions, derived from BackrunnerError
class BundleError(BackrunnerError):
    """
    Raised when a backrun bundle cannot be built from the probe transaction
    """


class GateError(BackrunnerError):
    """
    Raised when the completion gate is used out of order
    """


class ProviderError(BackrunnerError):
    pass


class RelayError(BackrunnerError):
    pass


class SimulationError(BackrunnerError):
    pass
