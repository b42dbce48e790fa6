"""
Print objects
=============

:class:`Print` wraps an ``FpPrint``, libfprint's fingerprint template. A
Print is produced by enrollment, by deserializing bytes that were written by
:meth:`Print.serialize`, or by listing the prints stored on a device. It is
consumed by :meth:`Device.verify` and :meth:`Device.identify`; no matching
happens in this module.
"""

import ctypes
import datetime
import logging
from typing import Any, Dict, Optional

from pyfprint import errors, native
from pyfprint.finger import Finger
from pyfprint.image import Image


logger = logging.getLogger(__name__)

METADATA_FIELDS = ("username", "finger", "description", "enroll_date")


def _decode(value: Optional[bytes]) -> Optional[str]:
    return value.decode('utf-8') if value is not None else None


def _encode(value: Optional[str]) -> Optional[bytes]:
    return value.encode('utf-8') if value is not None else None


class Print:
    """
    An enrolled fingerprint template.

    The wrapper owns exactly one reference on the native object and drops it
    in :meth:`release` (or when garbage collected).
    """

    def __init__(self, lib: native.NativeLibrary, handle: int):
        """
        Wrap an FpPrint pointer, taking over one reference on it.

        Args:
            lib: Native library handles.
            handle: FpPrint pointer. Floating references are sunk.
        """
        if not handle:
            raise errors.FprintError("Cannot wrap a NULL print")
        self._lib = lib
        self._handle = lib.adopt(handle)
        self._released = False

    @classmethod
    def borrow(cls, lib: native.NativeLibrary, handle: int) -> 'Print':
        """Wrap a pointer the caller does not own by adding a reference."""
        return cls(lib, lib.ref(handle))

    @classmethod
    def new(cls, device) -> 'Print':
        """
        Create an empty print to be used as an enrollment template.

        Args:
            device: The Device the print will be enrolled on.
        """
        lib = device.native
        handle = lib.fprint.fp_print_new(device.handle)
        if not handle:
            raise errors.FprintError("fp_print_new returned NULL")
        return cls(lib, handle)

    @classmethod
    def deserialize(cls, owner, data: bytes) -> 'Print':
        """
        Load a print from bytes produced by :meth:`serialize`.

        Args:
            owner: The Context (or NativeLibrary) providing the native library.
            data: Serialized print.

        Raises:
            DataInvalidError: If libfprint rejects the data.
        """
        lib = getattr(owner, 'native', owner)
        data = bytes(data)
        error = native.GErrorP()

        handle = lib.fprint.fp_print_deserialize(data, len(data), ctypes.pointer(error))
        if error:
            exc = errors.from_gerror(lib, error)
            logger.error(f"Failed to deserialize print ({len(data)} bytes): {exc}")
            raise exc
        if not handle:
            raise errors.DataInvalidError("fp_print_deserialize returned NULL")

        logger.debug(f"Deserialized print from {len(data)} bytes")
        return cls(lib, handle)

    @property
    def handle(self) -> int:
        if self._released:
            raise errors.FprintError("Print has been released")
        return self._handle

    @property
    def native(self) -> native.NativeLibrary:
        return self._lib

    def __del__(self):
        self.release()

    def release(self):
        """
        Drop the native reference.

        It's safe to call this method multiple times; the print cannot be
        used afterwards.
        """
        if not getattr(self, '_released', True):
            self._released = True
            self._lib.unref(self._handle)
            self._handle = None

    def serialize(self) -> bytes:
        """
        Serialize the print into libfprint's own storage format.

        Returns:
            The bytes exactly as emitted by ``fp_print_serialize``.
        """
        data = ctypes.POINTER(ctypes.c_ubyte)()
        length = ctypes.c_size_t(0)
        error = native.GErrorP()

        ok = self._lib.fprint.fp_print_serialize(
            self.handle,
            ctypes.pointer(data),
            ctypes.pointer(length),
            ctypes.pointer(error)
        )
        try:
            if error:
                exc = errors.from_gerror(self._lib, error)
                logger.error(f"Failed to serialize print: {exc}")
                raise exc
            if not ok or not data:
                raise errors.DataInvalidError("fp_print_serialize failed")
            return ctypes.string_at(data, length.value)
        finally:
            if data:
                self._lib.glib.g_free(data)

    @property
    def username(self) -> Optional[str]:
        return _decode(self._lib.fprint.fp_print_get_username(self.handle))

    @username.setter
    def username(self, value: Optional[str]):
        self._lib.fprint.fp_print_set_username(self.handle, _encode(value))

    @property
    def description(self) -> Optional[str]:
        return _decode(self._lib.fprint.fp_print_get_description(self.handle))

    @description.setter
    def description(self, value: Optional[str]):
        self._lib.fprint.fp_print_set_description(self.handle, _encode(value))

    @property
    def finger(self) -> Finger:
        return Finger(self._lib.fprint.fp_print_get_finger(self.handle))

    @finger.setter
    def finger(self, value):
        self._lib.fprint.fp_print_set_finger(self.handle, int(Finger(value)))

    @property
    def enroll_date(self) -> Optional[datetime.date]:
        glib = self._lib.glib
        gdate = self._lib.fprint.fp_print_get_enroll_date(self.handle)
        if not gdate or not glib.g_date_valid(gdate):
            return None
        return datetime.date(glib.g_date_get_year(gdate),
                             glib.g_date_get_month(gdate),
                             glib.g_date_get_day(gdate))

    @enroll_date.setter
    def enroll_date(self, value: Optional[datetime.date]):
        if value is None:
            self._lib.fprint.fp_print_set_enroll_date(self.handle, None)
            return

        glib = self._lib.glib
        gdate = glib.g_date_new_dmy(value.day, value.month, value.year)
        try:
            self._lib.fprint.fp_print_set_enroll_date(self.handle, gdate)
        finally:
            glib.g_date_free(gdate)

    @property
    def driver(self) -> Optional[str]:
        return _decode(self._lib.fprint.fp_print_get_driver(self.handle))

    @property
    def device_id(self) -> Optional[str]:
        return _decode(self._lib.fprint.fp_print_get_device_id(self.handle))

    @property
    def device_stored(self) -> bool:
        return bool(self._lib.fprint.fp_print_get_device_stored(self.handle))

    @property
    def image(self) -> Optional[Image]:
        handle = self._lib.fprint.fp_print_get_image(self.handle)
        if not handle:
            return None
        return Image(self._lib, self._lib.ref(handle))

    def get_metadata(self) -> Dict[str, Any]:
        """Return the identifying fields of the print as a dictionary."""
        return {field: getattr(self, field) for field in METADATA_FIELDS}

    def set_metadata(self, **fields):
        """
        Update identifying fields.

        Args:
            **fields: Any of username, finger, description, enroll_date.

        Raises:
            TypeError: For a field the native print does not support.
        """
        unknown = set(fields) - set(METADATA_FIELDS)
        if unknown:
            raise TypeError(f"Unsupported print metadata: {', '.join(sorted(unknown))}")
        for field, value in fields.items():
            setattr(self, field, value)

    def equal(self, other: 'Print') -> bool:
        """Whether both prints hold the same template (not a biometric match)."""
        return bool(self._lib.fprint.fp_print_equal(self.handle, other.handle))

    def compatible(self, device) -> bool:
        """Whether the print can be used with the given device."""
        return bool(self._lib.fprint.fp_print_compatible(self.handle, device.handle))

    def __repr__(self):
        if self._released:
            return "<Print (released)>"
        return f"<Print username={self.username!r} finger={self.finger.name}>"
