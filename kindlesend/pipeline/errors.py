"""
Error kinds raised inside the delivery pipeline.
Every per-request error is recovered by the pipeline and reported to the affected user.
"""


class KindleSendError(Exception):
    """Base class for pipeline errors"""


class InvalidFileName(KindleSendError, ValueError):
    """Declared file name is empty, too long or made of forbidden characters only"""


class NoPendingFile(KindleSendError, LookupError):
    """No pending session for the user (never existed, consumed or superseded)"""


class UnknownDevice(KindleSendError, LookupError):
    """Selected device label is not in the registry"""


class DeliveryFailed(KindleSendError):
    """Mail transport could not deliver the attachment"""
