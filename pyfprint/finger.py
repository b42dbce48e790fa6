"""Enumerations mirroring the libfprint C enums."""

from enum import IntEnum, IntFlag


class Finger(IntEnum):
    UNKNOWN = 0
    LEFT_THUMB = 1
    LEFT_INDEX = 2
    LEFT_MIDDLE = 3
    LEFT_RING = 4
    LEFT_LITTLE = 5
    RIGHT_THUMB = 6
    RIGHT_INDEX = 7
    RIGHT_MIDDLE = 8
    RIGHT_RING = 9
    RIGHT_LITTLE = 10

    @classmethod
    def parse(cls, value: str) -> 'Finger':
        """Accept either a name ("right-index", "RIGHT_INDEX") or a number."""
        if value.isdigit():
            return cls(int(value))
        return cls[value.strip().upper().replace('-', '_')]


class FingerStatus(IntFlag):
    NONE = 0
    NEEDED = 1 << 0
    PRESENT = 1 << 1


class DeviceFeature(IntFlag):
    NONE = 0
    CAPTURE = 1 << 0
    IDENTIFY = 1 << 1
    VERIFY = 1 << 2
    STORAGE = 1 << 3
    STORAGE_LIST = 1 << 4
    STORAGE_DELETE = 1 << 5
    STORAGE_CLEAR = 1 << 6
    DUPLICATES_CHECK = 1 << 7
    ALWAYS_ON = 1 << 8
    UPDATE_PRINT = 1 << 9


class ScanType(IntEnum):
    SWIPE = 0
    PRESS = 1


class Temperature(IntEnum):
    COLD = 0
    WARM = 1
    HOT = 2
