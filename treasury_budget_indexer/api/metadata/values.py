"""
Helpers for the untyped metadata tree attached to transactions.

A metadata tree is built from ``None``, ``bool``, ``int``, ``float``, ``str``,
lists and string keyed dicts. Everything coming from the chain or from a remote
anchor is normalised into this shape first, after which the ``as_*`` helpers
extract typed fields. The helpers are total: a value of the wrong shape yields
``None`` rather than an exception.
"""
from collections import UserList
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

import orjson
import pycardano

MetadataValue = Union[
    None, bool, int, float, str, List["MetadataValue"], Dict[str, "MetadataValue"]
]


def normalize(value: Any) -> MetadataValue:
    """
    Convert a decoded CBOR/JSON value into a plain metadata tree.
    Byte strings are hex encoded, map keys are stringified.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    if isinstance(value, Mapping):
        return {str(k): normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, UserList)):
        return [normalize(v) for v in value]
    raise TypeError(f"Unsupported metadata value of type {type(value).__name__}")


def metadata_from_auxiliary_data(
    auxiliary_data: Optional[pycardano.AuxiliaryData],
) -> Dict[str, MetadataValue]:
    """
    Extract the label -> value map from the auxiliary data of a transaction.
    """
    if auxiliary_data is None:
        return {}
    data = auxiliary_data.data
    if isinstance(data, (pycardano.AlonzoMetadata, pycardano.ShelleyMarryMetadata)):
        data = data.metadata
    if data is None:
        return {}
    return {str(label): normalize(value) for label, value in data.items()}


def as_mapping(value: MetadataValue) -> Optional[Dict[str, MetadataValue]]:
    return value if isinstance(value, dict) else None


def as_text(value: MetadataValue) -> Optional[str]:
    """
    Text field. On chain strings are limited to 64 bytes, so longer texts
    arrive as a list of chunks which are joined here.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return "".join(value)
    return None


def as_int(value: MetadataValue) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def as_text_list(value: MetadataValue) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    texts = [as_text(v) for v in value]
    return [t for t in texts if t is not None]


def as_mapping_list(value: MetadataValue) -> Optional[List[Dict[str, MetadataValue]]]:
    if not isinstance(value, list):
        return None
    return [v for v in value if isinstance(v, dict)]


# integers orjson can serialize; metadata integers reach -(2**64 - 1)
JSON_INT_MIN = -(2**63)
JSON_INT_MAX = 2**64 - 1


def _json_safe(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value if JSON_INT_MIN <= value <= JSON_INT_MAX else str(value)
    if isinstance(value, Mapping):
        return {k: _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    return value


def to_json(value: Any) -> Optional[str]:
    """
    Serialize an opaque blob for storage. Keys are sorted so equal trees
    always produce equal text. Integers beyond the 64 bit range are stored
    as their decimal string.
    """
    if value is None:
        return None
    return orjson.dumps(_json_safe(value), option=orjson.OPT_SORT_KEYS).decode()


def from_json(text: Optional[str]) -> Any:
    if text is None:
        return None
    return orjson.loads(text)
