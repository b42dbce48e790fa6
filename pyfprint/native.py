"""
Native library loader for libfprint
===================================

Loads the libfprint 2 shared library together with the GLib, GObject and GIO
runtime libraries it is built on, and declares the C prototypes used by the
rest of the package.

Everything in this module mirrors the published C headers (fprint.h, glib.h,
gobject.h, gio.h). Nothing here owns native memory: the wrapper classes in
:mod:`pyfprint.context`, :mod:`pyfprint.device` and :mod:`pyfprint.prints`
do.
"""

import ctypes
import ctypes.util
import logging
import platform
from typing import Optional


logger = logging.getLogger(__name__)


# Default shared object names
if platform.system() == 'Darwin':
    FPRINT_LIB_NAME = "libfprint-2.2.dylib"
    GLIB_LIB_NAME = "libglib-2.0.0.dylib"
    GOBJECT_LIB_NAME = "libgobject-2.0.0.dylib"
    GIO_LIB_NAME = "libgio-2.0.0.dylib"
else:
    FPRINT_LIB_NAME = "libfprint-2.so.2"
    GLIB_LIB_NAME = "libglib-2.0.so.0"
    GOBJECT_LIB_NAME = "libgobject-2.0.so.0"
    GIO_LIB_NAME = "libgio-2.0.so.0"


# Error domains (g_quark_to_string of the quarks registered by the libraries)
FP_DEVICE_ERROR_DOMAIN = "fp - device - error - quark"
FP_DEVICE_RETRY_DOMAIN = "fp - device - retry - quark"
G_IO_ERROR_DOMAIN = "g-io-error-quark"

# FpDeviceError
FP_DEVICE_ERROR_GENERAL = 0
FP_DEVICE_ERROR_NOT_SUPPORTED = 1
FP_DEVICE_ERROR_NOT_OPEN = 2
FP_DEVICE_ERROR_ALREADY_OPEN = 3
FP_DEVICE_ERROR_BUSY = 4
FP_DEVICE_ERROR_PROTO = 5
FP_DEVICE_ERROR_DATA_INVALID = 6
FP_DEVICE_ERROR_DATA_NOT_FOUND = 7
FP_DEVICE_ERROR_DATA_FULL = 8
FP_DEVICE_ERROR_DATA_DUPLICATE = 9
FP_DEVICE_ERROR_REMOVED = 10
FP_DEVICE_ERROR_TOO_HOT = 11

# FpDeviceRetry
FP_DEVICE_RETRY_GENERAL = 0
FP_DEVICE_RETRY_TOO_SHORT = 1
FP_DEVICE_RETRY_CENTER_FINGER = 2
FP_DEVICE_RETRY_REMOVE_FINGER = 3
FP_DEVICE_RETRY_TOO_FAST = 4

# GIOErrorEnum (subset used by libfprint)
G_IO_ERROR_FAILED = 0
G_IO_ERROR_PERMISSION_DENIED = 14
G_IO_ERROR_NOT_SUPPORTED = 15
G_IO_ERROR_CANCELLED = 19
G_IO_ERROR_TIMED_OUT = 24
G_IO_ERROR_BUSY = 26


class GError(ctypes.Structure):
    """struct _GError { GQuark domain; gint code; gchar *message; }"""
    _fields_ = [
        ("domain", ctypes.c_uint32),
        ("code", ctypes.c_int),
        ("message", ctypes.c_char_p),
    ]


class GPtrArray(ctypes.Structure):
    """struct _GPtrArray { gpointer *pdata; guint len; }"""
    _fields_ = [
        ("pdata", ctypes.POINTER(ctypes.c_void_p)),
        ("len", ctypes.c_uint),
    ]


GErrorP = ctypes.POINTER(GError)
GErrorPP = ctypes.POINTER(GErrorP)

# void (*FpEnrollProgress) (FpDevice *device, gint completed_stages,
#                           FpPrint *print, gpointer user_data, GError *error);
FpEnrollProgress = ctypes.CFUNCTYPE(
    None, ctypes.c_void_p, ctypes.c_int, ctypes.c_void_p, ctypes.c_void_p, GErrorP
)

# void (*FpMatchCb) (FpDevice *device, FpPrint *match, FpPrint *print,
#                    gpointer user_data, GError *error);
FpMatchCb = ctypes.CFUNCTYPE(
    None, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, GErrorP
)


class NativeLoadError(OSError):
    """Raised when one of the shared libraries cannot be loaded."""


def _load(lib_path: Optional[str], default_name: str, short_name: str):
    if lib_path is None:
        lib_path = ctypes.util.find_library(short_name) or default_name
    try:
        lib = ctypes.CDLL(lib_path)
    except OSError as e:
        error_msg = f"Could not load library '{lib_path}': {e}"
        logger.error(error_msg)
        raise NativeLoadError(error_msg) from e
    logger.info(f"Successfully loaded library: {lib_path}")
    return lib


class NativeLibrary:
    """
    Handles to libfprint and the GLib libraries with their prototypes set up.

    Each library can be supplied pre-loaded (any object exposing the C symbols
    as attributes) or given as a path; the default names for the current
    platform are used otherwise.
    """

    def __init__(self, fprint=None, glib=None, gobject=None, gio=None,
                 lib_path: str = None):
        """
        Load the libraries and declare the function prototypes.

        Args:
            fprint: Pre-loaded libfprint handle.
            glib: Pre-loaded libglib handle.
            gobject: Pre-loaded libgobject handle.
            gio: Pre-loaded libgio handle.
            lib_path: Path of the libfprint shared object, used when
                      ``fprint`` is not given.

        Raises:
            NativeLoadError: If a shared library cannot be loaded.
        """
        self.fprint = fprint if fprint is not None else _load(lib_path, FPRINT_LIB_NAME, "fprint-2")
        self.glib = glib if glib is not None else _load(None, GLIB_LIB_NAME, "glib-2.0")
        self.gobject = gobject if gobject is not None else _load(None, GOBJECT_LIB_NAME, "gobject-2.0")
        self.gio = gio if gio is not None else _load(None, GIO_LIB_NAME, "gio-2.0")

        self._setup_functions()

    def _setup_functions(self):
        """Set up the function prototypes for all wrapped libraries."""
        self._setup_glib_functions()
        self._setup_context_functions()
        self._setup_device_functions()
        self._setup_print_functions()
        self._setup_image_functions()

    def _setup_glib_functions(self):
        glib = self.glib
        # const gchar *g_quark_to_string(GQuark quark);
        glib.g_quark_to_string.restype = ctypes.c_char_p
        glib.g_quark_to_string.argtypes = [ctypes.c_uint32]

        # void g_error_free(GError *error);
        glib.g_error_free.restype = None
        glib.g_error_free.argtypes = [GErrorP]

        # void g_free(gpointer mem);
        glib.g_free.restype = None
        glib.g_free.argtypes = [ctypes.c_void_p]

        # GPtrArray *g_ptr_array_new(void);
        glib.g_ptr_array_new.restype = ctypes.POINTER(GPtrArray)
        glib.g_ptr_array_new.argtypes = []

        # void g_ptr_array_add(GPtrArray *array, gpointer data);
        glib.g_ptr_array_add.restype = None
        glib.g_ptr_array_add.argtypes = [ctypes.POINTER(GPtrArray), ctypes.c_void_p]

        # void g_ptr_array_unref(GPtrArray *array);
        glib.g_ptr_array_unref.restype = None
        glib.g_ptr_array_unref.argtypes = [ctypes.POINTER(GPtrArray)]

        # GDate *g_date_new_dmy(GDateDay day, GDateMonth month, GDateYear year);
        glib.g_date_new_dmy.restype = ctypes.c_void_p
        glib.g_date_new_dmy.argtypes = [ctypes.c_uint8, ctypes.c_int, ctypes.c_uint16]

        # gboolean g_date_valid(const GDate *date);
        glib.g_date_valid.restype = ctypes.c_int
        glib.g_date_valid.argtypes = [ctypes.c_void_p]

        # GDateDay / GDateMonth / GDateYear getters
        glib.g_date_get_day.restype = ctypes.c_uint8
        glib.g_date_get_day.argtypes = [ctypes.c_void_p]
        glib.g_date_get_month.restype = ctypes.c_int
        glib.g_date_get_month.argtypes = [ctypes.c_void_p]
        glib.g_date_get_year.restype = ctypes.c_uint16
        glib.g_date_get_year.argtypes = [ctypes.c_void_p]

        # void g_date_free(GDate *date);
        glib.g_date_free.restype = None
        glib.g_date_free.argtypes = [ctypes.c_void_p]

        gobject = self.gobject
        # gpointer g_object_ref(gpointer object);
        gobject.g_object_ref.restype = ctypes.c_void_p
        gobject.g_object_ref.argtypes = [ctypes.c_void_p]

        # gpointer g_object_ref_sink(gpointer object);
        gobject.g_object_ref_sink.restype = ctypes.c_void_p
        gobject.g_object_ref_sink.argtypes = [ctypes.c_void_p]

        # gboolean g_object_is_floating(gpointer object);
        gobject.g_object_is_floating.restype = ctypes.c_int
        gobject.g_object_is_floating.argtypes = [ctypes.c_void_p]

        # void g_object_unref(gpointer object);
        gobject.g_object_unref.restype = None
        gobject.g_object_unref.argtypes = [ctypes.c_void_p]

        gio = self.gio
        # GCancellable *g_cancellable_new(void);
        gio.g_cancellable_new.restype = ctypes.c_void_p
        gio.g_cancellable_new.argtypes = []

        # void g_cancellable_cancel(GCancellable *cancellable);
        gio.g_cancellable_cancel.restype = None
        gio.g_cancellable_cancel.argtypes = [ctypes.c_void_p]

    def _setup_context_functions(self):
        lib = self.fprint
        # FpContext *fp_context_new(void);
        lib.fp_context_new.restype = ctypes.c_void_p
        lib.fp_context_new.argtypes = []

        # void fp_context_enumerate(FpContext *context);
        lib.fp_context_enumerate.restype = None
        lib.fp_context_enumerate.argtypes = [ctypes.c_void_p]

        # GPtrArray *fp_context_get_devices(FpContext *context);
        lib.fp_context_get_devices.restype = ctypes.POINTER(GPtrArray)
        lib.fp_context_get_devices.argtypes = [ctypes.c_void_p]

    def _setup_device_functions(self):
        lib = self.fprint
        # const gchar *fp_device_get_driver(FpDevice *device); and friends
        for name in ("fp_device_get_driver", "fp_device_get_device_id", "fp_device_get_name"):
            getattr(lib, name).restype = ctypes.c_char_p
            getattr(lib, name).argtypes = [ctypes.c_void_p]

        # enum / int getters taking only the device
        for name in ("fp_device_get_scan_type", "fp_device_get_nr_enroll_stages",
                     "fp_device_get_features", "fp_device_get_finger_status",
                     "fp_device_get_temperature", "fp_device_is_open"):
            getattr(lib, name).restype = ctypes.c_int
            getattr(lib, name).argtypes = [ctypes.c_void_p]

        # gboolean fp_device_has_feature(FpDevice *device, FpDeviceFeature feature);
        lib.fp_device_has_feature.restype = ctypes.c_int
        lib.fp_device_has_feature.argtypes = [ctypes.c_void_p, ctypes.c_int]

        # gboolean fp_device_{open,close,clear_storage,suspend,resume}_sync(
        #     FpDevice *device, GCancellable *cancellable, GError **error);
        for name in ("fp_device_open_sync", "fp_device_close_sync",
                     "fp_device_clear_storage_sync", "fp_device_suspend_sync",
                     "fp_device_resume_sync"):
            getattr(lib, name).restype = ctypes.c_int
            getattr(lib, name).argtypes = [ctypes.c_void_p, ctypes.c_void_p, GErrorPP]

        # FpPrint *fp_device_enroll_sync(FpDevice *device, FpPrint *template_print,
        #     GCancellable *cancellable, FpEnrollProgress progress_cb,
        #     gpointer progress_data, GError **error);
        lib.fp_device_enroll_sync.restype = ctypes.c_void_p
        lib.fp_device_enroll_sync.argtypes = [
            ctypes.c_void_p,
            ctypes.c_void_p,
            ctypes.c_void_p,
            FpEnrollProgress,
            ctypes.c_void_p,
            GErrorPP
        ]

        # gboolean fp_device_verify_sync(FpDevice *device, FpPrint *enrolled_print,
        #     GCancellable *cancellable, FpMatchCb match_cb, gpointer match_data,
        #     gboolean *match, FpPrint **print, GError **error);
        lib.fp_device_verify_sync.restype = ctypes.c_int
        lib.fp_device_verify_sync.argtypes = [
            ctypes.c_void_p,
            ctypes.c_void_p,
            ctypes.c_void_p,
            FpMatchCb,
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_int),
            ctypes.POINTER(ctypes.c_void_p),
            GErrorPP
        ]

        # gboolean fp_device_identify_sync(FpDevice *device, GPtrArray *prints,
        #     GCancellable *cancellable, FpMatchCb match_cb, gpointer match_data,
        #     FpPrint **match, FpPrint **print, GError **error);
        lib.fp_device_identify_sync.restype = ctypes.c_int
        lib.fp_device_identify_sync.argtypes = [
            ctypes.c_void_p,
            ctypes.POINTER(GPtrArray),
            ctypes.c_void_p,
            FpMatchCb,
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.c_void_p),
            ctypes.POINTER(ctypes.c_void_p),
            GErrorPP
        ]

        # FpImage *fp_device_capture_sync(FpDevice *device, gboolean wait_for_finger,
        #     GCancellable *cancellable, GError **error);
        lib.fp_device_capture_sync.restype = ctypes.c_void_p
        lib.fp_device_capture_sync.argtypes = [ctypes.c_void_p, ctypes.c_int, ctypes.c_void_p, GErrorPP]

        # gboolean fp_device_delete_print_sync(FpDevice *device, FpPrint *enrolled_print,
        #     GCancellable *cancellable, GError **error);
        lib.fp_device_delete_print_sync.restype = ctypes.c_int
        lib.fp_device_delete_print_sync.argtypes = [ctypes.c_void_p, ctypes.c_void_p, ctypes.c_void_p, GErrorPP]

        # GPtrArray *fp_device_list_prints_sync(FpDevice *device,
        #     GCancellable *cancellable, GError **error);
        lib.fp_device_list_prints_sync.restype = ctypes.POINTER(GPtrArray)
        lib.fp_device_list_prints_sync.argtypes = [ctypes.c_void_p, ctypes.c_void_p, GErrorPP]

    def _setup_print_functions(self):
        lib = self.fprint
        # FpPrint *fp_print_new(FpDevice *device);
        lib.fp_print_new.restype = ctypes.c_void_p
        lib.fp_print_new.argtypes = [ctypes.c_void_p]

        # const gchar *fp_print_get_*(FpPrint *print);
        for name in ("fp_print_get_driver", "fp_print_get_device_id",
                     "fp_print_get_username", "fp_print_get_description"):
            getattr(lib, name).restype = ctypes.c_char_p
            getattr(lib, name).argtypes = [ctypes.c_void_p]

        # void fp_print_set_username / set_description(FpPrint *print, const gchar *value);
        for name in ("fp_print_set_username", "fp_print_set_description"):
            getattr(lib, name).restype = None
            getattr(lib, name).argtypes = [ctypes.c_void_p, ctypes.c_char_p]

        # FpFinger fp_print_get_finger(FpPrint *print);
        lib.fp_print_get_finger.restype = ctypes.c_int
        lib.fp_print_get_finger.argtypes = [ctypes.c_void_p]

        # void fp_print_set_finger(FpPrint *print, FpFinger finger);
        lib.fp_print_set_finger.restype = None
        lib.fp_print_set_finger.argtypes = [ctypes.c_void_p, ctypes.c_int]

        # gboolean fp_print_get_device_stored(FpPrint *print);
        lib.fp_print_get_device_stored.restype = ctypes.c_int
        lib.fp_print_get_device_stored.argtypes = [ctypes.c_void_p]

        # const GDate *fp_print_get_enroll_date(FpPrint *print);
        lib.fp_print_get_enroll_date.restype = ctypes.c_void_p
        lib.fp_print_get_enroll_date.argtypes = [ctypes.c_void_p]

        # void fp_print_set_enroll_date(FpPrint *print, const GDate *enroll_date);
        lib.fp_print_set_enroll_date.restype = None
        lib.fp_print_set_enroll_date.argtypes = [ctypes.c_void_p, ctypes.c_void_p]

        # FpImage *fp_print_get_image(FpPrint *print);
        lib.fp_print_get_image.restype = ctypes.c_void_p
        lib.fp_print_get_image.argtypes = [ctypes.c_void_p]

        # gboolean fp_print_compatible(FpPrint *self, FpDevice *device);
        lib.fp_print_compatible.restype = ctypes.c_int
        lib.fp_print_compatible.argtypes = [ctypes.c_void_p, ctypes.c_void_p]

        # gboolean fp_print_equal(FpPrint *self, FpPrint *other);
        lib.fp_print_equal.restype = ctypes.c_int
        lib.fp_print_equal.argtypes = [ctypes.c_void_p, ctypes.c_void_p]

        # gboolean fp_print_serialize(FpPrint *print, guchar **data, gsize *length,
        #     GError **error);
        lib.fp_print_serialize.restype = ctypes.c_int
        lib.fp_print_serialize.argtypes = [
            ctypes.c_void_p,
            ctypes.POINTER(ctypes.POINTER(ctypes.c_ubyte)),
            ctypes.POINTER(ctypes.c_size_t),
            GErrorPP
        ]

        # FpPrint *fp_print_deserialize(const guchar *data, gsize length, GError **error);
        lib.fp_print_deserialize.restype = ctypes.c_void_p
        lib.fp_print_deserialize.argtypes = [ctypes.c_char_p, ctypes.c_size_t, GErrorPP]

    def _setup_image_functions(self):
        lib = self.fprint
        # guint fp_image_get_width / get_height(FpImage *self);
        for name in ("fp_image_get_width", "fp_image_get_height"):
            getattr(lib, name).restype = ctypes.c_uint
            getattr(lib, name).argtypes = [ctypes.c_void_p]

        # gdouble fp_image_get_ppmm(FpImage *self);
        lib.fp_image_get_ppmm.restype = ctypes.c_double
        lib.fp_image_get_ppmm.argtypes = [ctypes.c_void_p]

        # const guchar *fp_image_get_data(FpImage *self, gsize *len);
        lib.fp_image_get_data.restype = ctypes.POINTER(ctypes.c_ubyte)
        lib.fp_image_get_data.argtypes = [ctypes.c_void_p, ctypes.POINTER(ctypes.c_size_t)]

    def quark_to_string(self, quark: int) -> str:
        name = self.glib.g_quark_to_string(quark)
        return name.decode('utf-8') if name else ""

    def adopt(self, obj: int) -> int:
        """
        Take ownership of a returned GObject.

        Floating references (GInitiallyUnowned such as a fresh FpPrint) are
        sunk; plain full references are kept as they are.
        """
        if self.gobject.g_object_is_floating(obj):
            self.gobject.g_object_ref_sink(obj)
        return obj

    def ref(self, obj: int) -> int:
        self.gobject.g_object_ref(obj)
        return obj

    def unref(self, obj: int):
        self.gobject.g_object_unref(obj)
