"""
Text extraction: raw upload bytes + declared media type -> plain text.

Dispatch is by media type, falling back to the file extension. Formats the
pipeline cannot read deeply (images, spreadsheets, presentations, archives)
produce a descriptive placeholder instead of failing, flagged as not
analyzable so the worker can skip the AI providers.

Extraction never retries: a failure here means the input is bad.
"""
import io
import re
import zipfile
from dataclasses import dataclass
from pathlib import PurePath

from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pdfminer.high_level import extract_text as pdf_extract_text
from pdfminer.pdfparser import PDFSyntaxError

from docai.errors import ExtractionError
from docai.logging_config import get_logger

log = get_logger(component="text_extractor")

PDF_TYPES = {"application/pdf"}
WORD_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
}
TEXT_TYPES = {"text/plain", "text/csv", "application/rtf", "text/rtf"}
SPREADSHEET_TYPES = {
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
PRESENTATION_TYPES = {
    "application/vnd.ms-powerpoint",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}
ARCHIVE_TYPES = {
    "application/zip",
    "application/x-zip-compressed",
    "application/x-rar-compressed",
    "application/x-7z-compressed",
    "application/gzip",
}

# A rejected PDF is only used as raw text when this much printable text remains
RAW_PDF_MIN_CHARS = 100
_NON_PRINTABLE_RE = re.compile(r"[^\x20-\x7e\n]")
_WHITESPACE_RE = re.compile(r"\s+")

_EXTENSION_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".rtf": "application/rtf",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".zip": "application/zip",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
}


@dataclass(frozen=True)
class ExtractionResult:
    """Extracted text and whether it is worth sending to an AI provider."""
    text: str
    analyzable: bool
    method: str


def resolve_media_type(media_type: str | None, file_name: str) -> str:
    """Normalize the declared type; use the extension when it is missing or generic."""
    declared = (media_type or "").split(";")[0].strip().lower()
    if declared and declared != "application/octet-stream":
        return declared
    suffix = PurePath(file_name or "").suffix.lower()
    return _EXTENSION_TYPES.get(suffix, declared or "application/octet-stream")


def _placeholder(kind: str, file_name: str) -> str:
    return (
        f"[{kind} file: {file_name}] Content extraction for this file type "
        f"is not supported. The file was stored successfully."
    )


def _printable_text(data: bytes) -> str:
    """Printable ASCII left in raw bytes, whitespace collapsed."""
    text = _NON_PRINTABLE_RE.sub(" ", data.decode("utf-8", errors="replace"))
    return _WHITESPACE_RE.sub(" ", text).strip()


class TextExtractor:
    """Format-dispatching text extractor."""

    def extract(self, data: bytes, media_type: str | None, file_name: str) -> ExtractionResult:
        """
        Convert a document to plain text.

        Blocking (the PDF and DOCX parsers are synchronous); the worker
        runs it in a thread.

        Raises:
            ExtractionError: unreadable input, or a readable file with no text
                (code EMPTY_EXTRACTION)
        """
        resolved = resolve_media_type(media_type, file_name)
        log.info("extracting_text", media_type=resolved, file_name=file_name, size=len(data))

        if resolved in PDF_TYPES:
            return self._extract_pdf(data)
        if resolved in WORD_TYPES:
            return ExtractionResult(self._extract_word(data, resolved), True, "docx")
        if resolved in TEXT_TYPES:
            return ExtractionResult(self._decode_text(data, resolved), True, "text")
        if resolved.startswith("image/"):
            return ExtractionResult(_placeholder("Image", file_name), False, "placeholder")
        if resolved in SPREADSHEET_TYPES:
            return ExtractionResult(_placeholder("Spreadsheet", file_name), False, "placeholder")
        if resolved in PRESENTATION_TYPES:
            return ExtractionResult(_placeholder("Presentation", file_name), False, "placeholder")
        if resolved in ARCHIVE_TYPES:
            return ExtractionResult(_placeholder("Archive", file_name), False, "placeholder")

        return ExtractionResult(_placeholder("Unrecognized", file_name), False, "placeholder")

    def _extract_pdf(self, data: bytes) -> ExtractionResult:
        try:
            text = pdf_extract_text(io.BytesIO(data))
        except Exception as exc:
            # Damaged PDFs often still carry their text uncompressed
            salvaged = _printable_text(data)
            if len(salvaged) > RAW_PDF_MIN_CHARS:
                log.warning("pdf_parse_failed_using_raw_text", error=str(exc), chars=len(salvaged))
                return ExtractionResult(salvaged, True, "pdf-raw")
            if isinstance(exc, PDFSyntaxError):
                raise ExtractionError(f"PDF could not be parsed: {exc}") from exc
            raise ExtractionError(f"PDF extraction failed: {exc}") from exc

        if not text or not text.strip():
            raise ExtractionError("PDF contains no extractable text", code="EMPTY_EXTRACTION")
        return ExtractionResult(text, True, "pdf")

    def _extract_word(self, data: bytes, media_type: str) -> str:
        try:
            document = DocxDocument(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            if media_type == "application/msword":
                # python-docx only reads the OOXML container
                raise ExtractionError(
                    "Legacy .doc format is not supported. Please convert to .docx first.",
                    code="UNSUPPORTED_FORMAT",
                ) from exc
            raise ExtractionError(f"DOCX could not be parsed: {exc}") from exc

        parts = [p.text for p in document.paragraphs if p.text.strip()]
        for table in document.tables:
            for row in table.rows:
                parts.append("\t".join(cell.text.strip() for cell in row.cells))

        text = "\n".join(parts)
        if not text.strip():
            raise ExtractionError("Document contains no extractable text", code="EMPTY_EXTRACTION")
        return text

    def _decode_text(self, data: bytes, media_type: str) -> str:
        text = data.decode("utf-8", errors="replace")
        if text.startswith("\ufeff"):
            text = text[1:]
        if not text.strip():
            raise ExtractionError("File is empty", code="EMPTY_EXTRACTION")
        return text
