"""
Slash-separated store paths.

A collection path has an odd number of segments (``calls``,
``calls/s1/participants``); a document path has an even number
(``calls/s1``, ``calls/s1/participants/u1``).
"""

from guardianlink.exceptions import ValidationError


def _segments(path: str) -> list[str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if not parts:
        raise ValidationError("Store path must not be empty", field="path", value=path)
    return parts


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p)


def is_collection_path(path: str) -> bool:
    return len(_segments(path)) % 2 == 1


def is_document_path(path: str) -> bool:
    return len(_segments(path)) % 2 == 0


def parent_path(path: str) -> str:
    """Parent collection of a document path."""
    parts = _segments(path)
    if len(parts) % 2:
        raise ValidationError("Not a document path", field="path", value=path)
    return "/".join(parts[:-1])


def doc_id(path: str) -> str:
    return _segments(path)[-1]


def require_document(path: str) -> str:
    if not is_document_path(path):
        raise ValidationError("Expected a document path", field="path", value=path)
    return "/".join(_segments(path))


def require_collection(path: str) -> str:
    if not is_collection_path(path):
        raise ValidationError("Expected a collection path", field="path", value=path)
    return "/".join(_segments(path))
