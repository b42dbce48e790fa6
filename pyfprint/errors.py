"""
Exceptions raised by pyfprint and the mapping from native GError values.

Every failure reported by libfprint arrives as a ``GError`` carrying a
domain quark and an integer code. :func:`error_class` maps that pair onto
one of the exception classes below; the native domain and code are kept
on the raised exception so they can be logged or compared.
"""

import logging
from typing import Optional, Type

from pyfprint import native


logger = logging.getLogger(__name__)


class FprintError(Exception):
    """Base exception for errors raised by the libfprint wrapper."""

    def __init__(self, message: str, code: int = None, domain: str = None):
        """
        Initialize an FprintError.

        Args:
            message: Error message
            code: Native error code if available
            domain: Native error domain if available
        """
        self.message = message
        self.code = code
        self.domain = domain

        if code is not None:
            super().__init__(f"{message} (Error code: {code}, {describe(domain, code)})")
        else:
            super().__init__(message)


class NativeInitError(FprintError):
    """The native library could not be loaded or initialized."""


class DeviceError(FprintError):
    """General device failure (FP_DEVICE_ERROR_GENERAL)."""


class DeviceStateError(DeviceError):
    """The device is not in a state that allows the requested operation."""


class DeviceNotOpenError(DeviceStateError):
    pass


class DeviceAlreadyOpenError(DeviceStateError):
    pass


class DeviceRemovedError(DeviceStateError):
    """The device was unplugged or its context has been closed."""


class DeviceBusyError(DeviceError):
    pass


class DeviceTooHotError(DeviceError):
    pass


class ProtocolError(DeviceError):
    pass


class NotSupportedError(FprintError):
    pass


class PermissionDeniedError(FprintError):
    pass


class OperationCancelledError(FprintError):
    pass


class DataError(FprintError):
    """Base class for errors about print data."""


class DataInvalidError(DataError):
    pass


class DataNotFoundError(DataError):
    pass


class DataFullError(DataError):
    pass


class DataDuplicateError(DataError):
    pass


class RetryError(FprintError):
    """The scan should be retried (finger too short, off center, ...)."""


class NativeIOError(FprintError):
    """A GIO error that has no more specific class."""


class UnknownNativeError(FprintError):
    """Catch-all for error domains this wrapper does not know about."""


_DEVICE_ERRORS = {
    native.FP_DEVICE_ERROR_GENERAL: DeviceError,
    native.FP_DEVICE_ERROR_NOT_SUPPORTED: NotSupportedError,
    native.FP_DEVICE_ERROR_NOT_OPEN: DeviceNotOpenError,
    native.FP_DEVICE_ERROR_ALREADY_OPEN: DeviceAlreadyOpenError,
    native.FP_DEVICE_ERROR_BUSY: DeviceBusyError,
    native.FP_DEVICE_ERROR_PROTO: ProtocolError,
    native.FP_DEVICE_ERROR_DATA_INVALID: DataInvalidError,
    native.FP_DEVICE_ERROR_DATA_NOT_FOUND: DataNotFoundError,
    native.FP_DEVICE_ERROR_DATA_FULL: DataFullError,
    native.FP_DEVICE_ERROR_DATA_DUPLICATE: DataDuplicateError,
    native.FP_DEVICE_ERROR_REMOVED: DeviceRemovedError,
    native.FP_DEVICE_ERROR_TOO_HOT: DeviceTooHotError,
}

_IO_ERRORS = {
    native.G_IO_ERROR_PERMISSION_DENIED: PermissionDeniedError,
    native.G_IO_ERROR_NOT_SUPPORTED: NotSupportedError,
    native.G_IO_ERROR_CANCELLED: OperationCancelledError,
    native.G_IO_ERROR_BUSY: DeviceBusyError,
}

_DESCRIPTIONS = {
    native.FP_DEVICE_ERROR_DOMAIN: {
        native.FP_DEVICE_ERROR_GENERAL: "General device error",
        native.FP_DEVICE_ERROR_NOT_SUPPORTED: "Operation not supported by the device",
        native.FP_DEVICE_ERROR_NOT_OPEN: "Device is not open",
        native.FP_DEVICE_ERROR_ALREADY_OPEN: "Device is already open",
        native.FP_DEVICE_ERROR_BUSY: "Device is busy",
        native.FP_DEVICE_ERROR_PROTO: "Protocol error",
        native.FP_DEVICE_ERROR_DATA_INVALID: "Print data is invalid",
        native.FP_DEVICE_ERROR_DATA_NOT_FOUND: "Print was not found on the device",
        native.FP_DEVICE_ERROR_DATA_FULL: "Device storage is full",
        native.FP_DEVICE_ERROR_DATA_DUPLICATE: "Print is already enrolled",
        native.FP_DEVICE_ERROR_REMOVED: "Device has been removed",
        native.FP_DEVICE_ERROR_TOO_HOT: "Device is too hot",
    },
    native.FP_DEVICE_RETRY_DOMAIN: {
        native.FP_DEVICE_RETRY_GENERAL: "Scan failed, retry",
        native.FP_DEVICE_RETRY_TOO_SHORT: "Swipe was too short, retry",
        native.FP_DEVICE_RETRY_CENTER_FINGER: "Finger was not centered, retry",
        native.FP_DEVICE_RETRY_REMOVE_FINGER: "Remove the finger and retry",
        native.FP_DEVICE_RETRY_TOO_FAST: "Swipe was too fast, retry",
    },
    native.G_IO_ERROR_DOMAIN: {
        native.G_IO_ERROR_PERMISSION_DENIED: "Permission denied",
        native.G_IO_ERROR_NOT_SUPPORTED: "Operation not supported",
        native.G_IO_ERROR_CANCELLED: "Operation was cancelled",
        native.G_IO_ERROR_TIMED_OUT: "Operation timed out",
        native.G_IO_ERROR_BUSY: "Resource busy",
    },
}


def error_class(domain: Optional[str], code: int) -> Type[FprintError]:
    """
    Map a native error domain and code to an exception class.

    The mapping is total: unknown codes inside a known domain fall back to
    the domain's generic class and unknown domains to UnknownNativeError.
    """
    if domain == native.FP_DEVICE_ERROR_DOMAIN:
        return _DEVICE_ERRORS.get(code, DeviceError)
    if domain == native.FP_DEVICE_RETRY_DOMAIN:
        return RetryError
    if domain == native.G_IO_ERROR_DOMAIN:
        return _IO_ERRORS.get(code, NativeIOError)
    return UnknownNativeError


def describe(domain: Optional[str], code: int) -> str:
    """Get a human-readable description of a native error code."""
    return _DESCRIPTIONS.get(domain, {}).get(code, f"{domain or 'unknown domain'} error")


def map_error(domain: Optional[str], code: int, message: str = None) -> FprintError:
    """Build the exception for a native error."""
    cls = error_class(domain, code)
    return cls(message or describe(domain, code), code=code, domain=domain)


def from_gerror(lib: "native.NativeLibrary", error, owned: bool = True) -> FprintError:
    """
    Convert a ``GError *`` into an exception.

    Args:
        lib: Native library handles.
        error: Non-NULL ``POINTER(GError)``.
        owned: Whether the caller owns the GError; owned errors are freed.
    """
    try:
        gerror = error.contents
        domain = lib.quark_to_string(gerror.domain)
        code = gerror.code
        message = gerror.message.decode('utf-8', 'replace') if gerror.message else None
    finally:
        if owned:
            lib.glib.g_error_free(error)

    return map_error(domain, code, message)
