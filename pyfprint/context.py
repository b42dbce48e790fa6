"""
Context objects
===============

:class:`Context` owns libfprint's ``FpContext``, the registry of fingerprint
devices. Keep the context alive for as long as any of its devices or prints
are in use; closing it closes the devices it opened and invalidates every
Device wrapper it handed out.
"""

import logging
import threading
from typing import Dict, List

from pyfprint import errors
from pyfprint.device import Device
from pyfprint.native import NativeLibrary, NativeLoadError
from pyfprint.prints import Print


logger = logging.getLogger(__name__)


class Context:
    """
    Python wrapper for an FpContext.

    Usage:
        with Context() as ctx:
            for device in ctx.get_devices():
                print(device.name)
    """

    def __init__(self, native: NativeLibrary = None, lib_path: str = None):
        """
        Load libfprint and create the native context.

        Args:
            native: Already loaded native library handles. When None the
                    libraries are loaded from their default locations.
            lib_path: Optional path to the libfprint shared library.

        Raises:
            NativeInitError: If the libraries cannot be loaded or the native
                             context cannot be created.
        """
        self._lock = threading.RLock()
        self._handle = None
        self._devices: Dict[int, Device] = {}

        if native is None:
            try:
                native = NativeLibrary(lib_path=lib_path)
            except NativeLoadError as e:
                raise errors.NativeInitError(str(e)) from e
            except AttributeError as e:
                # A symbol is missing: libfprint is too old for this wrapper.
                error_msg = f"Incompatible libfprint library: {e}"
                logger.error(error_msg)
                raise errors.NativeInitError(error_msg) from e
        self.native = native

        handle = native.fprint.fp_context_new()
        if not handle:
            error_msg = "fp_context_new failed"
            logger.error(error_msg)
            raise errors.NativeInitError(error_msg)

        self._handle = handle
        logger.info("libfprint context created")

    @property
    def handle(self) -> int:
        if self._handle is None:
            raise errors.FprintError("Context is closed")
        return self._handle

    @property
    def closed(self) -> bool:
        return self._handle is None

    def enumerate(self):
        """Make libfprint probe for devices now instead of on first access."""
        with self._lock:
            self.native.fprint.fp_context_enumerate(self.handle)

    def get_devices(self) -> List[Device]:
        """
        List the devices known to libfprint.

        Returns:
            One Device per native device, in the order libfprint reports
            them. The same Device object is returned for the same native
            device across calls. The list is empty when no sensor is present.
        """
        with self._lock:
            array = self.native.fprint.fp_context_get_devices(self.handle)
            pointers = []
            if array:
                pointers = [array.contents.pdata[i] for i in range(array.contents.len)]

            devices = []
            for pointer in pointers:
                device = self._devices.get(pointer)
                if device is None:
                    device = self._devices[pointer] = Device(self, pointer)
                devices.append(device)

            for pointer in set(self._devices) - set(pointers):
                logger.info("Device removed from the registry")
                self._devices.pop(pointer)._invalidate()

            logger.info(f"Found {len(devices)} device(s)")
            return devices

    def deserialize_print(self, data: bytes) -> Print:
        """Load a print serialized with :meth:`Print.serialize`."""
        return Print.deserialize(self, data)

    def close(self):
        """
        Release the native context.

        Devices opened through this context are closed first. It's safe to
        call this method multiple times.

        Raises:
            DeviceBusyError: If a device still has an operation in flight.
        """
        with self._lock:
            if self._handle is None:
                return

            # Claim every device first so no operation can start while the
            # context goes away.
            claims = []
            try:
                for device in self._devices.values():
                    claims.append((device, device._begin("close context", require_open=False)))
            except errors.DeviceBusyError as e:
                for device, op in claims:
                    device._end(op)
                error_msg = f"Cannot close context: {e}"
                logger.error(error_msg)
                raise errors.DeviceBusyError(error_msg) from e

            for device, op in claims:
                device._shutdown(op)
            self._devices.clear()

            self.native.unref(self._handle)
            self._handle = None
            logger.info("libfprint context released")

    def __del__(self):
        """Destructor: releases the context when the object is garbage-collected."""
        if getattr(self, '_handle', None) is None:
            return
        try:
            self.close()
        except errors.FprintError as e:
            logger.warning(f"Could not release context: {e}")

    def __enter__(self) -> 'Context':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
