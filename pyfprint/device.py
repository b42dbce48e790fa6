"""
Device objects
==============

:class:`Device` wraps an ``FpDevice`` discovered by a :class:`Context`. All
operations call libfprint's ``*_sync`` functions, which block the calling
thread and iterate its default GLib main context until the operation is
done. Progress and match callbacks therefore run synchronously on the
calling thread, from inside the blocking call.

A device runs one operation at a time. Starting a second operation while
one is in flight, from a callback or from another thread, raises
:class:`~pyfprint.errors.DeviceBusyError`.
"""

import contextlib
import ctypes
import logging
import threading
from typing import Callable, Iterable, List, NamedTuple, Optional

from pyfprint import errors, native
from pyfprint.finger import DeviceFeature, FingerStatus, ScanType, Temperature
from pyfprint.image import Image
from pyfprint.prints import Print


logger = logging.getLogger(__name__)


# callback(device, completed_stages, print, error)
EnrollCallback = Callable[['Device', int, Optional[Print], Optional[errors.FprintError]], None]
# callback(device, match, print, error)
MatchCallback = Callable[['Device', Optional[Print], Optional[Print], Optional[errors.FprintError]], None]


class VerifyResult(NamedTuple):
    matched: bool
    print: Optional[Print]


class IdentifyResult(NamedTuple):
    match: Optional[Print]
    print: Optional[Print]


class Cancellable:
    """Owns a GCancellable handed to a native operation."""

    def __init__(self, lib: native.NativeLibrary):
        self._lib = lib
        self.handle = lib.gio.g_cancellable_new()
        self.cancelled = False

    def cancel(self):
        if self.handle and not self.cancelled:
            self.cancelled = True
            self._lib.gio.g_cancellable_cancel(self.handle)

    def release(self):
        if self.handle:
            self._lib.unref(self.handle)
            self.handle = None


class _Operation:
    """State of one in-flight native call."""

    def __init__(self, lib: native.NativeLibrary, name: str):
        self.name = name
        self.cancellable = Cancellable(lib)
        self.exception = None

    def call(self, func, *args):
        # ctypes would print and drop an exception raised in a callback, so
        # keep it, abort the native call, and raise it once the call returns.
        if self.exception is not None:
            return
        try:
            func(*args)
        except Exception as e:
            logger.error(f"Callback raised during {self.name}, cancelling: {e!r}")
            self.exception = e
            self.cancellable.cancel()

    def raise_for_callback(self):
        if self.exception is not None:
            raise self.exception


class Device:
    """
    A fingerprint sensor.

    Instances are created by :meth:`Context.get_devices`; they stay valid as
    long as the context that discovered them is open.
    """

    def __init__(self, context, handle: int):
        """
        Initialize a Device instance.

        Args:
            context: The Context owning the native device.
            handle: FpDevice pointer (owned by the native context).
        """
        self._context = context
        self._lib = context.native
        self._handle = handle
        self._lock = threading.Lock()
        self._current = None
        self._invalidated = False

    @property
    def native(self) -> native.NativeLibrary:
        return self._lib

    @property
    def handle(self) -> int:
        if self._invalidated:
            raise errors.DeviceRemovedError("Device is no longer valid, its context was closed")
        return self._handle

    @property
    def driver(self) -> str:
        return (self._lib.fprint.fp_device_get_driver(self.handle) or b"").decode('utf-8')

    @property
    def vendor(self) -> str:
        # libfprint has no vendor string; the driver name identifies the maker.
        return self.driver

    @property
    def device_id(self) -> str:
        return (self._lib.fprint.fp_device_get_device_id(self.handle) or b"").decode('utf-8')

    @property
    def name(self) -> str:
        return (self._lib.fprint.fp_device_get_name(self.handle) or b"").decode('utf-8')

    @property
    def scan_type(self) -> ScanType:
        return ScanType(self._lib.fprint.fp_device_get_scan_type(self.handle))

    @property
    def nr_enroll_stages(self) -> int:
        return self._lib.fprint.fp_device_get_nr_enroll_stages(self.handle)

    @property
    def features(self) -> DeviceFeature:
        return DeviceFeature(self._lib.fprint.fp_device_get_features(self.handle))

    def has_feature(self, feature: DeviceFeature) -> bool:
        return bool(self._lib.fprint.fp_device_has_feature(self.handle, int(feature)))

    @property
    def finger_status(self) -> FingerStatus:
        return FingerStatus(self._lib.fprint.fp_device_get_finger_status(self.handle))

    @property
    def temperature(self) -> Temperature:
        return Temperature(self._lib.fprint.fp_device_get_temperature(self.handle))

    @property
    def is_open(self) -> bool:
        # libfprint tracks the state, and marks a device closed even when
        # closing it reports an error.
        if self._invalidated:
            return False
        return bool(self._lib.fprint.fp_device_is_open(self._handle))

    @property
    def busy(self) -> bool:
        return self._current is not None

    def _invalidate(self):
        """Called by the owning Context once the native device is gone."""
        with self._lock:
            self._invalidated = True

    def _begin(self, name: str, require_open: bool = True) -> _Operation:
        """Claim the device for one operation; every _begin needs an _end."""
        with self._lock:
            if self._invalidated:
                raise errors.DeviceRemovedError(f"Cannot {name}: device is no longer valid")
            if self._current is not None:
                raise errors.DeviceBusyError(
                    f"Cannot {name}: device is busy with {self._current.name}"
                )
            if require_open and not self.is_open:
                raise errors.DeviceNotOpenError(f"Cannot {name}: device is not open")
            op = self._current = _Operation(self._lib, name)
        return op

    def _end(self, op: _Operation):
        with self._lock:
            self._current = None
        op.cancellable.release()

    @contextlib.contextmanager
    def _operation(self, name: str, require_open: bool = True):
        op = self._begin(name, require_open)
        try:
            yield op
        finally:
            self._end(op)

    def _shutdown(self, op: _Operation):
        """
        Close and invalidate the device for its closing Context.

        ``op`` is a claim taken with :meth:`_begin`, so no other operation can
        start in between. Close errors are logged, not raised.
        """
        try:
            if self.is_open:
                try:
                    self._native_call(op, "fp_device_close_sync", "Closing device")
                except errors.FprintError as e:
                    logger.warning(f"Error closing device during cleanup: {e}")
        finally:
            with self._lock:
                self._invalidated = True
            self._end(op)

    def _finish(self, op: _Operation, ok, error, what: str):
        """Raise the outcome of a native call: callback error, GError, or failure flag."""
        native_exc = errors.from_gerror(self._lib, error) if error else None
        op.raise_for_callback()
        if native_exc is not None:
            logger.error(f"{what} failed on {self._handle_name()}: {native_exc}")
            raise native_exc
        if not ok:
            error_msg = f"{what} failed on {self._handle_name()}"
            logger.error(error_msg)
            raise errors.DeviceError(error_msg)

    def _handle_name(self) -> str:
        try:
            return self.name or self.driver or "device"
        except errors.FprintError:
            return "device"

    def _native_call(self, op: _Operation, func_name: str, what: str):
        error = native.GErrorP()
        ok = getattr(self._lib.fprint, func_name)(
            self._handle, op.cancellable.handle, ctypes.pointer(error)
        )
        self._finish(op, ok, error, what)

    def _simple_call(self, func_name: str, name: str, what: str, require_open: bool = True):
        with self._operation(name, require_open=require_open) as op:
            self._native_call(op, func_name, what)

    def _match_callback(self, op: _Operation, callback: Optional[MatchCallback], known=None):
        lib = self._lib
        known = known or {}

        def on_match(device_ptr, match_ptr, print_ptr, user_data, error_ptr):
            matched = known.get(match_ptr) if match_ptr else None
            if match_ptr and matched is None:
                matched = Print.borrow(lib, match_ptr)
            scanned = Print.borrow(lib, print_ptr) if print_ptr else None
            exc = errors.from_gerror(lib, error_ptr, owned=False) if error_ptr else None
            logger.debug(f"{op.name}: match={matched is not None} error={exc}")
            if callback is not None:
                op.call(callback, self, matched, scanned, exc)

        return native.FpMatchCb(on_match)

    def open(self):
        """
        Open the device.

        Raises:
            DeviceAlreadyOpenError: If libfprint reports the device as open.
            PermissionDeniedError, DeviceBusyError: On native failures.
        """
        self._simple_call("fp_device_open_sync", "open", "Opening device", require_open=False)
        logger.info(f"Opened device {self._handle_name()}")

    def close(self):
        """
        Close the device.

        libfprint considers the device closed afterwards even when closing
        reports an error.

        Raises:
            DeviceNotOpenError: If libfprint reports the device as closed.
        """
        self._simple_call("fp_device_close_sync", "close", "Closing device", require_open=False)
        logger.info(f"Closed device {self._handle_name()}")

    def cancel(self) -> bool:
        """
        Ask libfprint to abort the operation in flight.

        Callbacks that are already queued may still run; the operation then
        raises OperationCancelledError. Returns False if nothing was running.
        """
        with self._lock:
            op = self._current
        if op is None:
            logger.debug("Nothing to cancel")
            return False
        logger.info(f"Cancelling {op.name}")
        op.cancellable.cancel()
        return True

    def enroll(self, template: Print = None, callback: EnrollCallback = None) -> Print:
        """
        Enroll a new print.

        libfprint drives the capture stages itself; ``callback`` is invoked
        once per progress event with (device, completed_stages, print, error).
        ``print`` is the partial print if the driver provides one and
        ``error`` a RetryError when a scan has to be repeated.

        Args:
            template: Print carrying the metadata to enroll; a fresh one is
                      created when omitted.
            callback: Progress callback.

        Returns:
            The enrolled Print.
        """
        with self._operation("enroll") as op:
            lib = self._lib
            if template is None:
                template = Print.new(self)

            def on_progress(device_ptr, completed_stages, print_ptr, user_data, error_ptr):
                partial = Print.borrow(lib, print_ptr) if print_ptr else None
                exc = errors.from_gerror(lib, error_ptr, owned=False) if error_ptr else None
                logger.debug(f"Enroll progress: {completed_stages}/{self.nr_enroll_stages} error={exc}")
                if callback is not None:
                    op.call(callback, self, completed_stages, partial, exc)

            c_progress = native.FpEnrollProgress(on_progress)
            error = native.GErrorP()

            handle = lib.fprint.fp_device_enroll_sync(
                self.handle,
                template.handle,
                op.cancellable.handle,
                c_progress,
                None,
                ctypes.pointer(error)
            )

            result = Print(lib, handle) if handle else None
            try:
                self._finish(op, result is not None, error, "Enrollment")
            except BaseException:
                if result is not None:
                    result.release()
                raise

        logger.info(f"Enrolled print for {result.username!r} ({result.finger.name})")
        return result

    def verify(self, enrolled: Print, callback: MatchCallback = None) -> VerifyResult:
        """
        Compare a live scan against one enrolled print.

        ``callback`` is invoked with (device, match, print, error) as soon as
        the driver reports a result; ``match`` is ``enrolled`` on success.

        Returns:
            VerifyResult(matched, print) where print is the scanned print if
            the driver provides it.
        """
        with self._operation("verify") as op:
            lib = self._lib
            c_match = self._match_callback(op, callback, {enrolled.handle: enrolled})
            match = ctypes.c_int(0)
            out_print = ctypes.c_void_p()
            error = native.GErrorP()

            ok = lib.fprint.fp_device_verify_sync(
                self.handle,
                enrolled.handle,
                op.cancellable.handle,
                c_match,
                None,
                ctypes.pointer(match),
                ctypes.pointer(out_print),
                ctypes.pointer(error)
            )

            scanned = Print(lib, out_print.value) if out_print.value else None
            try:
                self._finish(op, ok, error, "Verification")
            except BaseException:
                if scanned is not None:
                    scanned.release()
                raise

        logger.info(f"Verification {'matched' if match.value else 'did not match'}")
        return VerifyResult(bool(match.value), scanned)

    def identify(self, prints: Iterable[Print], callback: MatchCallback = None) -> IdentifyResult:
        """
        Compare a live scan against a gallery of prints.

        Returns:
            IdentifyResult(match, print); ``match`` is the matching object
            from ``prints`` or None.
        """
        prints = list(prints)
        with self._operation("identify") as op:
            lib = self._lib
            glib = lib.glib
            known = {p.handle: p for p in prints}
            c_match = self._match_callback(op, callback, known)
            out_match = ctypes.c_void_p()
            out_print = ctypes.c_void_p()
            error = native.GErrorP()

            array = glib.g_ptr_array_new()
            try:
                for p in prints:
                    glib.g_ptr_array_add(array, p.handle)

                ok = lib.fprint.fp_device_identify_sync(
                    self.handle,
                    array,
                    op.cancellable.handle,
                    c_match,
                    None,
                    ctypes.pointer(out_match),
                    ctypes.pointer(out_print),
                    ctypes.pointer(error)
                )
            finally:
                glib.g_ptr_array_unref(array)

            matched = None
            if out_match.value:
                matched = known.get(out_match.value)
                if matched is None:
                    matched = Print(lib, out_match.value)
                else:
                    lib.unref(out_match.value)
            scanned = Print(lib, out_print.value) if out_print.value else None
            try:
                self._finish(op, ok, error, "Identification")
            except BaseException:
                if scanned is not None:
                    scanned.release()
                raise

        logger.info(f"Identification against {len(prints)} print(s): "
                    f"{'matched ' + repr(matched.username) if matched else 'no match'}")
        return IdentifyResult(matched, scanned)

    def capture(self, wait_for_finger: bool = True) -> Image:
        """Capture a raw image (devices with the CAPTURE feature only)."""
        with self._operation("capture") as op:
            error = native.GErrorP()
            handle = self._lib.fprint.fp_device_capture_sync(
                self.handle, int(wait_for_finger), op.cancellable.handle, ctypes.pointer(error)
            )
            image = Image(self._lib, handle) if handle else None
            try:
                self._finish(op, image is not None, error, "Capture")
            except BaseException:
                if image is not None:
                    image.release()
                raise
        return image

    def list_prints(self) -> List[Print]:
        """List the prints stored on the device itself."""
        with self._operation("list prints") as op:
            lib = self._lib
            error = native.GErrorP()
            array = lib.fprint.fp_device_list_prints_sync(
                self.handle, op.cancellable.handle, ctypes.pointer(error)
            )
            prints = []
            if array:
                try:
                    prints = [Print.borrow(lib, array.contents.pdata[i])
                              for i in range(array.contents.len)]
                finally:
                    lib.glib.g_ptr_array_unref(array)
            self._finish(op, bool(array), error, "Listing prints")

        logger.debug(f"Device holds {len(prints)} print(s)")
        return prints

    def delete_print(self, enrolled: Print):
        """Delete a print from the device storage."""
        with self._operation("delete print") as op:
            error = native.GErrorP()
            ok = self._lib.fprint.fp_device_delete_print_sync(
                self.handle, enrolled.handle, op.cancellable.handle, ctypes.pointer(error)
            )
            self._finish(op, ok, error, "Deleting print")
        logger.info(f"Deleted print {enrolled.username!r} from device")

    def clear_storage(self):
        """Delete every print stored on the device."""
        self._simple_call("fp_device_clear_storage_sync", "clear storage", "Clearing storage")
        logger.info("Cleared device storage")

    def suspend(self):
        self._simple_call("fp_device_suspend_sync", "suspend", "Suspending device")

    def resume(self):
        self._simple_call("fp_device_resume_sync", "resume", "Resuming device")

    def __enter__(self) -> 'Device':
        """Context manager entry: opens the device."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Context manager exit: closes the device if it is still open.

        A close failure is only logged while another exception propagates.
        """
        if not self.is_open:
            return
        try:
            self.close()
        except errors.FprintError as e:
            if exc_type is None:
                raise
            logger.warning(f"Error closing device after {exc_type.__name__}: {e}")

    def __repr__(self):
        if self._invalidated:
            return "<Device (invalid)>"
        return f"<Device {self.driver}:{self.name!r} open={self.is_open}>"
