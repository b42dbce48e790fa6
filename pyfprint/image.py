"""Wrapper for FpImage, the greyscale image returned by captures."""

import ctypes
import logging


logger = logging.getLogger(__name__)


class Image:
    """
    A captured fingerprint image.

    The pixel data is copied out of the native object when the wrapper is
    created, so the Python object stays valid after the native reference is
    released.
    """

    def __init__(self, lib, handle: int):
        """
        Args:
            lib: The NativeLibrary the image belongs to.
            handle: An FpImage pointer this wrapper holds a reference on.
        """
        self._lib = lib
        self._handle = handle
        self._released = False

        self.width = lib.fprint.fp_image_get_width(handle)
        self.height = lib.fprint.fp_image_get_height(handle)
        self.ppmm = lib.fprint.fp_image_get_ppmm(handle)

        length = ctypes.c_size_t(0)
        data = lib.fprint.fp_image_get_data(handle, ctypes.pointer(length))
        self.data = ctypes.string_at(data, length.value) if data else b""
        logger.debug(f"Image {self.width}x{self.height} ({len(self.data)} bytes, {self.ppmm:.2f} ppmm)")

    def __del__(self):
        self.release()

    def release(self):
        """Drop the native reference. Safe to call more than once."""
        if not getattr(self, '_released', True) and self._handle:
            self._released = True
            self._lib.unref(self._handle)
            self._handle = None

    def to_pgm(self) -> bytes:
        """Encode the image as a binary PGM (P5) file."""
        header = f"P5\n{self.width} {self.height}\n255\n".encode('ascii')
        return header + self.data
