"""
JSON helpers for archive columns and trade-event records.

Decimals are written as strings so prices, quantities and force values
survive a round trip through SQLite text columns and log files without
float rounding.

Usage:
    from shared.serialization_utils import dumps
    row["signals"] = dumps(signal.signals)
"""

import dataclasses
import json
from decimal import Decimal
from enum import Enum
from typing import Any


class DecimalEncoder(json.JSONEncoder):
    """Encode Decimal as str, Enum as its value and dataclasses as dicts."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
            # Shallow: nested values come back through default()
            return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
        return super().default(obj)


def dumps(obj: Any, **kwargs: Any) -> str:
    """json.dumps with DecimalEncoder."""
    return json.dumps(obj, cls=DecimalEncoder, **kwargs)
