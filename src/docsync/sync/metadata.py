"""Document metadata: YAML frontmatter codec and TrackedDocument mapping.

Local documents carry their sync metadata in a YAML frontmatter block::

    ---
    doc-id: 1AbC
    last-synced-hash: 9f86d0...
    sync-revision: 3
    tags: [notes]
    ---
    body text

Keys the engine does not own (``tags`` above) are preserved verbatim in
``TrackedDocument.extra`` and written back in their original order.
"""

from __future__ import annotations

import hashlib
import logging
from datetime import datetime
from typing import Any

import yaml

from ..core.ports import LocalStorage, MetadataCodec
from .models import LocalObservation, TrackedDocument

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Metadata keys
# ---------------------------------------------------------------------------

KEY_IDENTIFIER = "doc-id"
KEY_HASH = "last-synced-hash"
KEY_SYNCED_AT = "last-synced"
KEY_SYNC_PATH = "last-sync-path"
KEY_REVISION = "sync-revision"
KEY_DELETION_SCHEDULED = "deletion-scheduled"
KEY_ORIGINAL_IDENTIFIER = "original-doc-id"
KEY_RESTORED_FROM_DELETE = "restored-from-delete"

# Written into archived documents only.
KEY_DELETION_REASON = "deletion-reason"
KEY_ORIGINAL_PATH = "original-path"
KEY_ARCHIVED_FROM = "archived-from"

_FIELD_KEYS: dict[str, str] = {
    "identifier": KEY_IDENTIFIER,
    "last_synced_content_hash": KEY_HASH,
    "last_synced_at": KEY_SYNCED_AT,
    "last_synced_path": KEY_SYNC_PATH,
    "last_synced_revision": KEY_REVISION,
    "deletion_scheduled_at": KEY_DELETION_SCHEDULED,
    "original_identifier": KEY_ORIGINAL_IDENTIFIER,
    "restored_from_delete_at": KEY_RESTORED_FROM_DELETE,
}

SYNC_KEYS = frozenset(_FIELD_KEYS.values())
ARCHIVE_KEYS = frozenset(
    {
        KEY_DELETION_REASON,
        KEY_ORIGINAL_PATH,
        KEY_ARCHIVED_FROM,
        KEY_DELETION_SCHEDULED,
    }
)

_DELIMITER = "---"


# ---------------------------------------------------------------------------
# Content hashing
# ---------------------------------------------------------------------------


def content_hash(content: str) -> str:
    """Compute a normalised SHA-256 hex digest of *content*.

    Normalisation steps (applied in order):

    1. Strip BOM (``\\ufeff``).
    2. Replace ``\\r\\n`` with ``\\n``.
    3. Right-strip each line.
    4. Strip trailing empty lines.

    The result is encoded as UTF-8 before hashing.
    """
    text = content.lstrip("\ufeff")
    text = text.replace("\r\n", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()
    normalised = "\n".join(lines)
    return hashlib.sha256(normalised.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Frontmatter codec
# ---------------------------------------------------------------------------


class FrontmatterCodec:
    """``MetadataCodec`` for YAML frontmatter delimited by ``---`` lines.

    A document without a leading ``---`` line has no metadata.  A block
    whose YAML does not parse to a mapping is treated as body text, so a
    document starting with a horizontal rule is never mangled.
    """

    def decode(self, raw: str) -> tuple[dict[str, Any], str]:
        text = raw.lstrip("\ufeff")
        lines = text.splitlines(True)
        if not lines or lines[0].rstrip() != _DELIMITER:
            return {}, raw

        for index in range(1, len(lines)):
            if lines[index].rstrip() == _DELIMITER:
                block = "".join(lines[1:index])
                body = "".join(lines[index + 1 :])
                break
        else:
            return {}, raw

        try:
            data = yaml.safe_load(block) if block.strip() else {}
        except yaml.YAMLError as exc:
            logger.warning("Unparseable frontmatter, treating as body: %s", exc)
            return {}, raw
        if not isinstance(data, dict):
            return {}, raw
        return data, body

    def encode(self, metadata: dict[str, Any], body: str) -> str:
        if not metadata:
            return body
        block = yaml.safe_dump(
            _to_yaml_safe(metadata),
            sort_keys=False,
            allow_unicode=True,
            default_flow_style=False,
        )
        return f"{_DELIMITER}\n{block}{_DELIMITER}\n{body}"


def _to_yaml_safe(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _to_yaml_safe(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_yaml_safe(v) for v in value]
    return value


# ---------------------------------------------------------------------------
# TrackedDocument mapping
# ---------------------------------------------------------------------------


def tracked_from_metadata(metadata: dict[str, Any]) -> TrackedDocument | None:
    """Build a ``TrackedDocument`` from decoded metadata.

    Returns ``None`` for a document without any metadata.  A document with
    only foreign keys yields an unlinked record, so those keys survive
    the first sync.  Unknown keys are kept in ``extra``.
    """
    if not metadata:
        return None
    extra = {k: v for k, v in metadata.items() if k not in SYNC_KEYS}
    fields: dict[str, Any] = {"extra": extra}
    for field_name, key in _FIELD_KEYS.items():
        value = metadata.get(key)
        if value is None or value == "":
            continue
        # YAML reads numeric-looking identifiers as ints
        if key in (KEY_IDENTIFIER, KEY_ORIGINAL_IDENTIFIER):
            value = str(value)
        fields[field_name] = value
    return TrackedDocument.model_validate(fields)


def metadata_from_tracked(
    doc: TrackedDocument | None, extra: dict[str, Any] | None = None
) -> dict[str, Any]:
    """Serialize a ``TrackedDocument`` back into a metadata dict.

    Unknown keys come first, in their original order, followed by the
    sync keys that have a value.
    """
    result: dict[str, Any] = dict(extra if extra is not None else {})
    if doc is None:
        return result
    result.update(doc.extra)
    for field_name, key in _FIELD_KEYS.items():
        value = getattr(doc, field_name)
        if value is None:
            continue
        if key == KEY_REVISION and value == 0:
            continue
        result[key] = value
    return result


def strip_keys(metadata: dict[str, Any], keys: frozenset[str]) -> dict[str, Any]:
    return {k: v for k, v in metadata.items() if k not in keys}


# ---------------------------------------------------------------------------
# Document helpers
# ---------------------------------------------------------------------------


def encode_document(
    codec: MetadataCodec, doc: TrackedDocument | None, body: str
) -> str:
    """Serialize *doc* and *body* into a raw local document."""
    return codec.encode(metadata_from_tracked(doc), body)


def observe_local(
    storage: LocalStorage, codec: MetadataCodec, path: str
) -> LocalObservation:
    """Read and decode the local document at *path* (blocking)."""
    raw = storage.read_document(path)
    metadata, body = codec.decode(raw)
    return LocalObservation(
        path=path,
        content=body,
        modified_at=storage.modified_at(path),
        metadata=tracked_from_metadata(metadata),
    )
