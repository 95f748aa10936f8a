"""
Resume text extraction.

Converts an attachment's bytes into plain text, dispatching on the file
extension:

    .pdf          pdfplumber -> pdfplumber (tolerant, structure errors only)
                  -> pypdf (strict=False) -> PyMuPDF (blocks in reading order)
    .doc / .docx  python-docx
    .txt          UTF-8

The first strategy that returns non-empty text wins.  When every strategy
fails, ExtractionError is raised listing each strategy's reason.  Scanned,
image-only PDFs therefore fail here (no OCR).
"""

import io
import logging
import re
from typing import List, Tuple

import fitz  # PyMuPDF
import pdfplumber
from docx import Document
from pypdf import PdfReader

from intake.errors import ExtractionError
from intake.models.candidate import ExtractedText

logger = logging.getLogger(__name__)

PDF_EXTENSIONS = (".pdf",)
WORD_EXTENSIONS = (".doc", ".docx")
TEXT_EXTENSIONS = (".txt",)

SUPPORTED_EXTENSIONS = PDF_EXTENSIONS + WORD_EXTENSIONS + TEXT_EXTENSIONS

# Error text that marks a damaged cross-reference table or file structure
_STRUCTURE_ERROR_MARKERS = (
    "xref",
    "cross-reference",
    "cross reference",
    "startxref",
    "trailer",
    "no /root",
    "eof marker",
    "syntax",
    "format",
)


def _is_structure_error(exc: Exception) -> bool:
    text = f"{type(exc).__name__} {exc}".lower()
    return any(marker in text for marker in _STRUCTURE_ERROR_MARKERS)


def _repair_pdf_bytes(content: bytes) -> bytes:
    """Trim junk before the %PDF- header and after the last %%EOF."""
    start = content.find(b"%PDF-")
    if start > 0:
        content = content[start:]
    end = content.rfind(b"%%EOF")
    if end != -1:
        content = content[:end + len(b"%%EOF")]
    return content


# ---------------------------------------------------------------------------
# PDF strategies
# ---------------------------------------------------------------------------

def _pdfplumber_pages(pdf) -> str:
    text_parts = []
    for page in pdf.pages:
        page_text = page.extract_text()
        if page_text:
            text_parts.append(page_text)

        # Skills and work history are often laid out as tables
        for table in page.extract_tables():
            rows = []
            for row in table or []:
                cells = [str(cell).strip() if cell else "" for cell in row]
                if any(cells):
                    rows.append(" | ".join(cells))
            if rows:
                text_parts.append("\n".join(rows))
    return "\n\n".join(text_parts)


def _extract_pdfplumber(content: bytes) -> str:
    with pdfplumber.open(io.BytesIO(content)) as pdf:
        return _pdfplumber_pages(pdf)


def _extract_pdfplumber_tolerant(content: bytes) -> str:
    """pdfplumber over a trimmed stream, ignoring metadata errors."""
    with pdfplumber.open(
        io.BytesIO(_repair_pdf_bytes(content)),
        strict_metadata=False,
        laparams={"all_texts": True},
    ) as pdf:
        return _pdfplumber_pages(pdf)


def _extract_pypdf(content: bytes) -> str:
    reader = PdfReader(io.BytesIO(content), strict=False)
    pages = [page.extract_text() or "" for page in reader.pages]
    return "\n\n".join(p for p in pages if p.strip())


def _extract_pymupdf(content: bytes) -> str:
    """Concatenate text blocks page by page, top-to-bottom then left-to-right."""
    pages = []
    with fitz.open(stream=content, filetype="pdf") as document:
        for page in document:
            # (x0, y0, x1, y1, text, block_no, block_type); type 0 is text
            blocks = [b for b in page.get_text("blocks") if b[6] == 0]
            blocks.sort(key=lambda b: (round(b[1], 1), b[0]))
            page_text = "\n".join(b[4].strip() for b in blocks if b[4].strip())
            if page_text:
                pages.append(page_text)
    return "\n\n".join(pages)


def extract_pdf_text(content: bytes) -> ExtractedText:
    """
    Run the PDF fallback chain.

    The tolerant pdfplumber retry only runs when the first attempt failed on
    the file structure (XRef table, trailer, syntax); other failures go
    straight to the next library.
    """
    failures: List[Tuple[str, str]] = []

    try:
        text = _extract_pdfplumber(content)
        if text.strip():
            return ExtractedText(text=text, strategy="pdfplumber")
        failures.append(("pdfplumber", "no text layer found"))
    except Exception as exc:
        failures.append(("pdfplumber", str(exc) or type(exc).__name__))
        if _is_structure_error(exc):
            logger.info("PDF structure error (%s), retrying with tolerant pdfplumber", exc)
            try:
                text = _extract_pdfplumber_tolerant(content)
                if text.strip():
                    return ExtractedText(text=text, strategy="pdfplumber_tolerant")
                failures.append(("pdfplumber_tolerant", "no text layer found"))
            except Exception as retry_exc:
                failures.append(("pdfplumber_tolerant", str(retry_exc) or type(retry_exc).__name__))

    for name, strategy in (("pypdf", _extract_pypdf), ("pymupdf", _extract_pymupdf)):
        logger.info("Falling back to %s for PDF extraction", name)
        try:
            text = strategy(content)
        except Exception as exc:
            failures.append((name, str(exc) or type(exc).__name__))
            continue
        if text.strip():
            return ExtractedText(text=text, strategy=name)
        failures.append((name, "no text layer found"))

    raise ExtractionError(
        "No text extracted from PDF. The PDF may be scanned/image-based (OCR not supported)",
        failures=failures,
    )


# ---------------------------------------------------------------------------
# Word / plain text
# ---------------------------------------------------------------------------

def _extract_docx(content: bytes) -> str:
    document = Document(io.BytesIO(content))
    parts = [paragraph.text for paragraph in document.paragraphs if paragraph.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells]
            if any(cells):
                parts.append(" | ".join(cells))
    return "\n".join(parts)


def extract_word_text(content: bytes, extension: str = ".docx") -> ExtractedText:
    """
    Read a Word document with python-docx.

    Only the .docx (OOXML) format is readable.  A .doc that is really a .docx
    reads normally; a legacy binary .doc fails with an explicit "not supported"
    message.
    """
    try:
        text = _extract_docx(content)
    except Exception as exc:
        message = "Could not read Word document"
        if extension == ".doc":
            message = "Legacy .doc (Word 97-2003) is not supported, only .docx can be read"
        raise ExtractionError(
            message, failures=[("python-docx", str(exc) or type(exc).__name__)]
        ) from exc
    if not text.strip():
        raise ExtractionError("Word document contains no text", failures=[("python-docx", "empty document")])
    return ExtractedText(text=text, strategy="python-docx")


def extract_plain_text(content: bytes) -> ExtractedText:
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ExtractionError("Text file is not valid UTF-8", failures=[("utf-8", str(exc))]) from exc
    if not text.strip():
        raise ExtractionError("Text file is empty", failures=[("utf-8", "empty file")])
    return ExtractedText(text=text, strategy="utf-8")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def file_extension(filename: str) -> str:
    match = re.search(r"(\.[A-Za-z0-9]+)$", filename or "")
    return match.group(1).lower() if match else ""


def extract_text(content: bytes, extension: str) -> ExtractedText:
    """
    Extract plain text from an attachment.

    Args:
        content: Raw attachment bytes.
        extension: File extension including the dot, e.g. ".pdf".

    Raises:
        ExtractionError: If the type is unsupported or every strategy failed.
    """
    extension = (extension or "").lower()
    if not extension.startswith("."):
        extension = "." + extension

    if not content:
        raise ExtractionError(f"Empty {extension} attachment", failures=[("input", "zero bytes")])

    if extension in PDF_EXTENSIONS:
        result = extract_pdf_text(content)
    elif extension in WORD_EXTENSIONS:
        result = extract_word_text(content, extension)
    elif extension in TEXT_EXTENSIONS:
        result = extract_plain_text(content)
    else:
        raise ExtractionError(f"Unsupported file type: {extension}")

    logger.info("Extracted %d characters using %s", len(result.text), result.strategy)
    return result
