"""Exception hierarchy for the prediction engine."""


class LotteryError(Exception):
    """Base class for every error raised by the engine."""


class InvalidParameterError(LotteryError):
    """Caller supplied malformed or empty input."""


class AlgorithmError(LotteryError):
    """Model-internal failure: insufficient data, untrained model, persistence."""
