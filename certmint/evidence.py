# Copyright (c) Rich Connexions Ltd. All rights reserved.
# Licensed under the MIT License. See LICENSE for details.
"""Evidence bundle fingerprinting.

The fingerprint identifies one physical production batch. It is computed
server-side over a canonical compact JSON form of the bundle::

    {"documents": [sorted lowercase digests], "metadata": {...}, "v": 1}

with keys sorted at every level, so reordering documents or reformatting
metadata yields the same fingerprint.
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import certmint.config as _config
from certmint.exceptions import InvalidEvidenceError

__all__ = [
    "canonical_evidence",
    "fingerprint_evidence",
    "hash_file",
    "normalize_document_hashes",
]

_HEX_DIGEST = re.compile(r"^[0-9a-f]{32,128}$")
_CHUNK_SIZE = 64 * 1024


def normalize_document_hashes(document_hashes: Iterable[str]) -> List[str]:
    """Lowercase, strip ``0x``, de-duplicate and sort document digests.

    Raises:
        InvalidEvidenceError: If the list is empty or an entry is not hex.
    """
    if isinstance(document_hashes, (str, bytes)):
        raise InvalidEvidenceError("Document hashes must be a list of hex digests")
    normalized = set()
    for value in document_hashes:
        if not isinstance(value, str):
            raise InvalidEvidenceError(f"Document hash is not a string: {value!r}")
        digest = value.strip().lower()
        if digest.startswith("0x"):
            digest = digest[2:]
        if not _HEX_DIGEST.match(digest):
            raise InvalidEvidenceError(f"Document hash is not a hex digest: {value!r}")
        normalized.add(digest)
    if not normalized:
        raise InvalidEvidenceError("At least one evidence document is required")
    return sorted(normalized)


def canonical_evidence(
    document_hashes: Iterable[str], metadata: Optional[Mapping[str, Any]] = None
) -> bytes:
    """Serialize the evidence bundle to canonical compact JSON bytes."""
    if metadata is not None and not isinstance(metadata, Mapping):
        raise InvalidEvidenceError("Evidence metadata must be an object")
    bundle: Dict[str, Any] = {
        "documents": normalize_document_hashes(document_hashes),
        "metadata": dict(metadata or {}),
        "v": _config.EVIDENCE_FINGERPRINT_VERSION,
    }
    try:
        return json.dumps(
            bundle, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False
        ).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise InvalidEvidenceError(f"Evidence metadata is not canonical JSON: {e}") from e


def fingerprint_evidence(
    document_hashes: Iterable[str], metadata: Optional[Mapping[str, Any]] = None
) -> str:
    """SHA-256 hex digest of the canonical evidence bundle."""
    return hashlib.sha256(canonical_evidence(document_hashes, metadata)).hexdigest()


def hash_file(path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a document on disk."""
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()
