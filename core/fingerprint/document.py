"""Document fingerprint generation from already-extracted text and stats."""

from __future__ import annotations

import hashlib
import json
import logging
import re
from collections import Counter
from collections.abc import Mapping
from pathlib import PurePath

from core.fingerprint.models import DocumentFingerprint, DocumentStats, DocumentStructure
from core.templates.models import LayoutType
from core.utils.events import log_event

logger = logging.getLogger("docmatch.fingerprint")

DEFAULT_KEYWORD_LIMIT = 50

STOP_WORDS = frozenset(
    {
        "the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "from", "was", "were", "been", "have", "has", "had", "will", "would", "could",
        "should", "may", "might", "can", "must", "shall", "this", "that", "these", "those",
    }
)
_COMMON_ENGLISH_WORDS = ("the", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by")
_ENGLISH_HIT_THRESHOLD = 10

_KEYWORD_RE = re.compile(r"\b[a-z]{3,}\b")
_WORD_RE = re.compile(r"\b[a-z]+\b")
_SPACE_RE = re.compile(r"[ \t]+")
_PIPE_CELL_RE = re.compile(r"\|\s*[^|]+\s*\|", re.MULTILINE)
_FORM_RE = re.compile(r"(name|address|phone|email).*:.*", re.IGNORECASE)

TEXT_PATTERN_BANK: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("date_iso", re.compile(r"\b\d{4}-\d{2}-\d{2}\b")),
    ("date_us", re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b")),
    ("ticket_number", re.compile(r"\b[A-Z]{2,4}-\d{4,6}\b")),
    ("email", re.compile(r"\b[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}\b")),
    ("phone_us", re.compile(r"\b\d{3}-\d{3}-\d{4}\b")),
)

_FORMATS_BY_SUFFIX = {
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
    ".xlsx": "xlsx",
    ".xls": "xls",
    ".txt": "txt",
    ".rtf": "rtf",
}


def document_format_from_filename(filename: str) -> str:
    return _FORMATS_BY_SUFFIX.get(PurePath(filename).suffix.lower(), "unknown")


def build_document_fingerprint(
    text: str,
    metadata: Mapping[str, object],
    stats: DocumentStats,
    *,
    document_format: str,
    filename: str | None = None,
    keyword_limit: int = DEFAULT_KEYWORD_LIMIT,
) -> DocumentFingerprint:
    """Build a comparable fingerprint for one document.

    The result depends only on the arguments; the same inputs always yield an
    equal fingerprint with the same ``fingerprint_key``.
    """

    normalized_text = normalize_text(text)
    metadata_map = _metadata_strings(metadata)
    structure = _build_structure(text, stats)

    fingerprint = DocumentFingerprint(
        document_format=document_format.lower(),
        filename_stem=PurePath(filename).stem.lower() if filename else None,
        metadata=metadata_map,
        content_keywords=tuple(extract_keywords(text, limit=keyword_limit)),
        structure=structure,
        text_patterns=tuple(detect_text_patterns(text)),
        language=detect_language(text),
        content_hash=content_hash(normalized_text),
        fingerprint_key=document_fingerprint_key(
            text,
            metadata_map,
            stats,
            document_format=document_format,
            filename=filename,
            keyword_limit=keyword_limit,
        ),
    )
    log_event(
        logger,
        logging.DEBUG,
        "document_fingerprint",
        document_format=fingerprint.document_format,
        keyword_count=len(fingerprint.content_keywords),
        patterns=list(fingerprint.text_patterns),
        layout=structure.layout_type,
    )
    return fingerprint


def tokenize_keywords(text: str) -> list[str]:
    """Lower-case keyword tokens of three or more letters, stop words removed."""

    return [word for word in _KEYWORD_RE.findall(text.lower()) if word not in STOP_WORDS]


def extract_keywords(text: str, *, limit: int = DEFAULT_KEYWORD_LIMIT) -> list[str]:
    """Top ``limit`` keywords by frequency; ties keep first-occurrence order."""

    if not text.strip():
        return []
    counts = Counter(tokenize_keywords(text))
    return [word for word, _ in counts.most_common(limit)]


def detect_text_patterns(text: str) -> list[str]:
    return [name for name, pattern in TEXT_PATTERN_BANK if pattern.search(text)]


def detect_language(text: str) -> str:
    if not text.strip():
        return "en"
    hits = sum(1 for word in _WORD_RE.findall(text.lower()) if word in _COMMON_ENGLISH_WORDS)
    return "en" if hits > _ENGLISH_HIT_THRESHOLD else "unknown"


def contains_table_patterns(text: str) -> bool:
    if any(len(line.split("\t")) > 3 for line in text.split("\n")):
        return True
    return _PIPE_CELL_RE.search(text) is not None


def classify_layout(text: str, *, has_tables: bool, is_scanned: bool) -> LayoutType:
    if is_scanned and not text.strip():
        return "scanned"
    if has_tables:
        return "table"
    if _FORM_RE.search(text):
        return "form"
    if "Dear " in text or "Sincerely" in text:
        return "letter"
    return "standard"


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_SPACE_RE.sub(" ", line).strip() for line in text.split("\n")]
    return "\n".join(line for line in lines if line)


def content_hash(normalized_text: str) -> str:
    return hashlib.sha256(normalized_text.encode("utf-8")).hexdigest()


def _build_structure(text: str, stats: DocumentStats) -> DocumentStructure:
    has_tables = stats.has_tables if stats.has_tables is not None else contains_table_patterns(text)
    word_count = stats.word_count if stats.word_count is not None else len(text.split())
    return DocumentStructure(
        page_count=stats.page_count,
        word_count=word_count,
        has_tables=has_tables,
        has_images=stats.has_images,
        is_scanned=stats.is_scanned,
        layout_type=classify_layout(text, has_tables=has_tables, is_scanned=stats.is_scanned),
    )


def document_fingerprint_key(
    text: str,
    metadata: Mapping[str, object],
    stats: DocumentStats,
    *,
    document_format: str,
    filename: str | None = None,
    keyword_limit: int = DEFAULT_KEYWORD_LIMIT,
) -> str:
    """Digest of every fingerprint input; cheap enough to compute before a cache lookup."""

    payload = {
        "content": content_hash(text),
        "metadata": _metadata_strings(metadata),
        "stats": stats.model_dump(mode="json"),
        "format": document_format.lower(),
        "filename": filename,
        "keyword_limit": keyword_limit,
    }
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def _metadata_strings(metadata: Mapping[str, object]) -> dict[str, str]:
    return {str(key): "" if value is None else str(value) for key, value in metadata.items()}
