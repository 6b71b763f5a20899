from typing import Any


class MissingType:
    """
    Type for the MISSING sentinel, representing an omitted update field.

    Update operations use it to tell a field that was not provided (MISSING)
    apart from a field explicitly cleared to null (None).
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MissingType, cls).__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo: Any):
        return self


MISSING = MissingType()


def is_provided(value: Any) -> bool:
    """True when an update field was supplied (including an explicit None)."""
    return value is not MISSING
