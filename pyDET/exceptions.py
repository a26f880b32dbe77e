from __future__ import annotations


class DETError(Exception):
    """Base class for errors raised by pyDET."""


class InvalidConfiguration(DETError, ValueError):
    """Bad training parameters or input data, detected before any tree is built."""


class OutOfRangeLabel(DETError, ValueError):
    """A class label falls outside ``[0, n_classes)``."""


class UnknownPathQuery(DETError, KeyError):
    """A path lookup for a tag that the cacher never visited."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable.
        return str(self.args[0]) if self.args else ""


class DegenerateFold(DETError, RuntimeError):
    """No cross-validation fold could be evaluated."""


class DegenerateFoldWarning(UserWarning):
    """A single cross-validation fold was skipped."""
