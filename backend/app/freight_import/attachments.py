"""Bill-of-lading (BOL) attachment references and supersession naming."""

import re
from dataclasses import dataclass

from app.matching_engine.text import str_or_none

SUPERSEDED_MARKER = "_REPLACED"

_QUERY_RE = re.compile(r"\?.*$")
_PDF_RE = re.compile(r"\.pdf$")
_IMAGE_RE = re.compile(r"\.(jpg|jpeg|png|gif|webp|bmp|tif|tiff)$")
_ALREADY_MARKED_RE = re.compile(re.escape(SUPERSEDED_MARKER) + r"\.[A-Za-z0-9]{2,10}(\?.*)?$")
_HAS_EXTENSION_RE = re.compile(r"\.[A-Za-z0-9]{2,10}($|\?)")

BOL_TYPE_PDF = "pdf"
BOL_TYPE_IMAGE = "image"


@dataclass
class BolReference:
    path: str | None = None
    type: str | None = None

    @property
    def writable(self) -> bool:
        return bool(self.path) and bool(self.type)


def bol_type_from_path(path: str) -> str | None:
    """``pdf`` / ``image`` from the extension; unknown extensions give None."""
    p = _QUERY_RE.sub("", path.lower())
    if _PDF_RE.search(p):
        return BOL_TYPE_PDF
    if _IMAGE_RE.search(p):
        return BOL_TYPE_IMAGE
    return None


def extract_bol(
    image_path: str | None,
    payload_path: str | None,
    payload: dict | None,
) -> BolReference:
    """Locate the BOL for an import record.

    The record's own ``image_path`` wins; otherwise the first POD image named
    in the payload is joined onto ``payload_path``.
    """
    img = str_or_none(image_path)
    if img:
        return BolReference(img, bol_type_from_path(img))

    base = str_or_none(payload_path)
    if not base or not isinstance(payload, dict):
        return BolReference()

    first = None
    pod_images = payload.get("pod_images")
    if isinstance(pod_images, list) and pod_images:
        first = str_or_none(pod_images[0])
    if not first:
        for key in ("pod_image", "bol_image", "ticket_image"):
            first = str_or_none(payload.get(key))
            if first:
                break
    if not first:
        return BolReference()

    joined = base.rstrip("/\\") + "/" + first.lstrip("/\\")
    return BolReference(joined, bol_type_from_path(joined))


def superseded_name(path: str) -> str:
    """``foo.jpg?x=1`` -> ``foo_REPLACED.jpg?x=1``."""
    query = ""
    if "?" in path:
        path, query = path.split("?", 1)
        query = "?" + query

    dot = path.rfind(".")
    if dot == -1:
        return path + SUPERSEDED_MARKER + query
    return path[:dot] + SUPERSEDED_MARKER + path[dot:] + query


def mark_superseded(path) -> str | None:
    """Supersession target for a stored reference.

    Returns None for missing values. Paths already marked, or without a
    recognisable extension, come back unchanged.
    """
    if not isinstance(path, str):
        return None
    path = path.strip()
    if not path:
        return None
    if _ALREADY_MARKED_RE.search(path):
        return path
    if not _HAS_EXTENSION_RE.search(path):
        return path
    return superseded_name(path)
