"""Exception taxonomy for the ratings engine."""


class RatingError(Exception):
    """Base class for every error raised by the ratings engine."""


class ConfigError(RatingError):
    """Raised when Glicko-2 constants or settings are invalid."""


class NumericDivergence(RatingError):
    """Raised when the volatility solver does not converge."""


class DateParseError(RatingError):
    """Raised when a contest date or a YYYY-MM period cannot be parsed."""


class StoreError(RatingError):
    """Raised when the rating store fails to read or persist."""


class AlreadyRunning(RatingError):
    """Raised when a recalculation is requested while another one is in progress."""
