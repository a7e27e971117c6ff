from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

from google.cloud.firestore import DocumentReference

# Firestore auto-ids: 20 chars from [A-Za-z0-9]. A bare auto-id stored in a
# relationship field is the Firestore flavour of "ObjectId saved as hex string".
AUTO_ID_RE = re.compile(r"^[A-Za-z0-9]{20}$")


@dataclass(frozen=True)
class NativeRef:
    collection: str
    doc_id: str

    @property
    def path(self) -> str:
        return f"{self.collection}/{self.doc_id}"


@dataclass(frozen=True)
class BusinessId:
    value: str


Identifier = Union[NativeRef, BusinessId]


def ref_parts(ref: DocumentReference) -> Tuple[str, str]:
    # path is "<col>/<id>" or "<col>/<id>/<subcol>/<id>"; the last pair wins.
    segments = ref.path.split("/")
    return segments[-2], segments[-1]


def _path_parts(value: str) -> Optional[Tuple[str, str]]:
    segments = [s for s in value.strip("/").split("/")]
    if len(segments) < 2 or len(segments) % 2 != 0 or any(not s for s in segments):
        return None
    return segments[-2], segments[-1]


def to_identifier(value: Any, default_collection: str) -> Optional[Identifier]:
    """Classify a raw field value once, at the data-model boundary.

    Returns None for values that cannot identify anything (empty, bool, dicts, ...).
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, DocumentReference):
        col, doc_id = ref_parts(value)
        return NativeRef(col, doc_id)
    if isinstance(value, int):
        return BusinessId(str(value))
    if isinstance(value, float):
        if value.is_integer():
            return BusinessId(str(int(value)))
        return None
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None
    if "/" in s:
        parts = _path_parts(s)
        if parts:
            return NativeRef(*parts)
        return BusinessId(s)
    if AUTO_ID_RE.match(s):
        return NativeRef(default_collection, s)
    return BusinessId(s)


def normalize_id_str(value: Any) -> str:
    """Normalized string form used when comparing ids of unknown representation."""
    if value is None or isinstance(value, bool):
        return ""
    if isinstance(value, DocumentReference):
        return ref_parts(value)[1].casefold()
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    s = str(value).strip()
    if "/" in s:
        s = s.rstrip("/").rsplit("/", 1)[-1]
    return s.casefold()


def describe(value: Any) -> str:
    """Short printable form for reports and logs."""
    if isinstance(value, DocumentReference):
        return f"ref:{value.path}"
    if value is None:
        return "null"
    return f"{type(value).__name__}:{value}"
