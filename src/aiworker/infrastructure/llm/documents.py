"""
Document text extraction for backends that cannot ingest documents natively.

PDFs are read through their text layer first; pages without one are run
through PyMuPDF's OCR hook (needs a local Tesseract install). Extraction
failures never fail the request: the block is replaced by a marker the
model can still reason about.
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_PAGES = 50
_DATA_URL_PREFIX = re.compile(r"^data:[^;]+;base64,")


class DocumentExtractionError(RuntimeError):
    pass


def _decode(data: str) -> bytes:
    try:
        return base64.b64decode(_DATA_URL_PREFIX.sub("", data), validate=False)
    except (ValueError, TypeError) as exc:
        raise DocumentExtractionError(f"invalid base64 payload: {exc}") from exc


def extract_pdf_text(data: str, name: str = "unknown.pdf", *, max_pages: int = MAX_PAGES) -> str:
    """Extract text from a base64-encoded PDF."""
    import fitz  # PyMuPDF

    raw = _decode(data)
    try:
        doc = fitz.open(stream=raw, filetype="pdf")
    except Exception as exc:
        raise DocumentExtractionError(f"cannot open {name}: {exc}") from exc

    parts: List[str] = []
    try:
        page_count = min(doc.page_count, max_pages)
        if doc.page_count > max_pages:
            logger.info("PDF %s has %s pages, limiting to %s", name, doc.page_count, max_pages)
        for index in range(page_count):
            page = doc.load_page(index)
            text = page.get_text().strip()
            if not text:
                text = _ocr_page(page, name, index)
            if text:
                parts.append(text)
    finally:
        doc.close()
    return "\n\n".join(parts)


def _ocr_page(page: Any, name: str, index: int) -> str:
    try:
        textpage = page.get_textpage_ocr(full=True)
        return page.get_text(textpage=textpage).strip()
    except RuntimeError as exc:
        # raised when no Tesseract installation is available
        logger.debug("OCR unavailable for %s page %s: %s", name, index + 1, exc)
        return ""


def document_block_to_text(block: Dict[str, Any]) -> str:
    source = block.get("source") or {}
    name = source.get("name") or "Unbekannt"
    media_type = source.get("media_type")
    if source.get("data") and media_type == "application/pdf":
        try:
            text = extract_pdf_text(source["data"], name)
            return f"[PDF-Inhalt: {name}]\n\n{text}"
        except Exception as exc:
            logger.warning("PDF text extraction failed for %s: %s", name, exc)
            return f"[PDF-Dokument: {name} - Text-Extraktion fehlgeschlagen: {exc}]"
    if source.get("text"):
        return str(source["text"])
    if source.get("data") and media_type:
        return f"[Dokument: {name} ({media_type})]"
    return f"[Dokument: {name}]"


def flatten_blocks(content: Any) -> str:
    """Render a content value (string or typed blocks) as plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return str(content)

    parts: List[str] = []
    for block in content:
        if not isinstance(block, dict):
            parts.append(str(block))
            continue
        kind = block.get("type")
        if kind == "text":
            parts.append(block.get("text") or "")
        elif kind == "document":
            parts.append(document_block_to_text(block))
        elif kind == "image":
            name = (block.get("source") or {}).get("name") or "Unbekannt"
            parts.append(f"[Bild: {name}]")
        else:
            value: Optional[Any] = block.get("content") or block.get("text")
            if value:
                parts.append(value if isinstance(value, str) else str(value))
    return "\n".join(p for p in parts if p)


def _needs_extraction(block: Any) -> bool:
    if not isinstance(block, dict) or block.get("type") != "document":
        return False
    source = block.get("source") or {}
    return bool(source.get("data")) and source.get("media_type") == "application/pdf"


def _extract_blocks(content: Any) -> Any:
    if not isinstance(content, list):
        return content
    out: List[Any] = []
    for block in content:
        if _needs_extraction(block):
            out.append({"type": "text", "text": document_block_to_text(block)})
        elif isinstance(block, dict) and block.get("type") == "tool_result":
            out.append({**block, "content": _extract_blocks(block.get("content"))})
        else:
            out.append(block)
    return out


def extract_documents(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Return ``messages`` with every embedded PDF replaced by its extracted text.

    Blocking (PyMuPDF and OCR); callers on an event loop run it in a thread.
    """
    return [{**message, "content": _extract_blocks(message.get("content"))} for message in messages]
