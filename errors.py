# errors.py
class InsulinCalcError(Exception):
    """Base class for errors the UI turns into status messages."""


class StorageQuotaError(InsulinCalcError):
    """The persisted record would not fit in local storage."""


class ExportError(InsulinCalcError):
    """Chart rendering or document serialization failed.

    The underlying exception is chained as ``__cause__``.
    """
