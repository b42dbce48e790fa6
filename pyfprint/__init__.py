"""
Python bindings for libfprint
=============================

A ctypes wrapper around libfprint 2, the fingerprint reader library used by
fprintd. It exposes device discovery, enrollment, verification,
identification and print (de)serialization with Python ownership and
exception handling.

Usage:
------
    import pyfprint

    with pyfprint.Context() as ctx:
        device = ctx.get_devices()[0]
        with device:
            template = pyfprint.Print.new(device)
            template.username = "bruce"
            template.finger = pyfprint.Finger.RIGHT_INDEX

            enrolled = device.enroll(template, callback=lambda dev, stage, p, err:
                                     print(f"{stage}/{dev.nr_enroll_stages}"))
            matched, _ = device.verify(enrolled)

        data = enrolled.serialize()
        same = ctx.deserialize_print(data)
"""

from pyfprint.context import Context
from pyfprint.device import Device, IdentifyResult, VerifyResult
from pyfprint.errors import (
    DataDuplicateError,
    DataError,
    DataFullError,
    DataInvalidError,
    DataNotFoundError,
    DeviceAlreadyOpenError,
    DeviceBusyError,
    DeviceError,
    DeviceNotOpenError,
    DeviceRemovedError,
    DeviceStateError,
    DeviceTooHotError,
    FprintError,
    NativeInitError,
    NativeIOError,
    NotSupportedError,
    OperationCancelledError,
    PermissionDeniedError,
    ProtocolError,
    RetryError,
    UnknownNativeError,
    error_class,
    map_error,
)
from pyfprint.finger import DeviceFeature, Finger, FingerStatus, ScanType, Temperature
from pyfprint.image import Image
from pyfprint.native import NativeLibrary
from pyfprint.prints import Print

__version__ = "0.3.0"
