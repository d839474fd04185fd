"""Document processor: PDF, Word, spreadsheet, presentation and plain text."""

import csv
import io
import math
import re
import zipfile
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import load_workbook
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..core.config import DocumentOptions
from ..core.exceptions import ValidationError
from ..core.mime import get_extension
from ..core.models import (
    ArtifactType,
    DerivedArtifact,
    ProcessOptions,
    ProcessorOutput,
    ProcessorType,
)
from .base import Processor, render_placeholder

PDF = "pdf"
WORD = "word"
SPREADSHEET = "spreadsheet"
PRESENTATION = "presentation"
TEXT = "text"

MIME_SUBTYPES = {
    "application/pdf": PDF,
    "application/msword": WORD,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": WORD,
    "application/vnd.ms-excel": SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": SPREADSHEET,
    "text/csv": SPREADSHEET,
    "application/vnd.ms-powerpoint": PRESENTATION,
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": PRESENTATION,
    "text/plain": TEXT,
    "text/html": TEXT,
    "text/markdown": TEXT,
    "application/json": TEXT,
    "application/xml": TEXT,
    "text/xml": TEXT,
}

EXTENSION_SUBTYPES = {
    ".pdf": PDF,
    ".doc": WORD,
    ".docx": WORD,
    ".xls": SPREADSHEET,
    ".xlsx": SPREADSHEET,
    ".csv": SPREADSHEET,
    ".ppt": PRESENTATION,
    ".pptx": PRESENTATION,
    ".txt": TEXT,
    ".html": TEXT,
    ".htm": TEXT,
    ".md": TEXT,
    ".json": TEXT,
    ".xml": TEXT,
}

THUMBNAIL_LABELS = {
    PDF: "PDF",
    WORD: "WORD",
    SPREADSHEET: "EXCEL",
    PRESENTATION: "PPT",
    TEXT: "TEXT",
}

TRUNCATION_MARKER = "\n[truncated]"
CHARS_PER_PAGE = 3000
SHEET_SAMPLE_ROWS = 50
WORD_NAMESPACE = {"w": "http://schemas.openxmlformats.org/wordprocessingml/2006/main"}


def document_subtype(mime_type: str, file_name: str = "") -> Optional[str]:
    """Sub-type by MIME type first, file extension second."""
    subtype = MIME_SUBTYPES.get((mime_type or "").lower().split(";")[0].strip())
    if subtype:
        return subtype
    return EXTENSION_SUBTYPES.get(get_extension(file_name))


def decode_text(data: bytes) -> Tuple[str, str]:
    """Decode bytes, returning ``(text, encoding)``."""
    for encoding in ("utf-8-sig", "utf-16"):
        if encoding == "utf-16" and not data.startswith((b"\xff\xfe", b"\xfe\xff")):
            continue
        try:
            text = data.decode(encoding)
            return text, "utf-8" if encoding == "utf-8-sig" else encoding
        except UnicodeDecodeError:
            continue
    return data.decode("latin-1"), "latin-1"


def count_words(text: str) -> int:
    return len(text.split())


def _cell_to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class DocumentProcessor(Processor):
    """Text and structure extraction for office-style documents."""

    processor_type = ProcessorType.DOCUMENT

    def __init__(self, options: Optional[DocumentOptions] = None):
        self.options = options or DocumentOptions()
        super().__init__()

    def supports(self, mime_type: str, file_name: str = "") -> bool:
        return document_subtype(mime_type, file_name) is not None

    def validate(self, data: bytes, options: ProcessOptions) -> None:
        self.check_size(data, self.options.max_file_size, "Document")
        subtype = document_subtype(options.mime_type, options.file_name)
        if subtype is None:
            raise ValidationError(
                f"Unsupported document type: {options.mime_type or options.file_name}",
                field="mime_type",
            )
        if subtype == PDF:
            pages = len(self._open_pdf(data).pages)
            if pages > self.options.max_pages:
                raise ValidationError(
                    f"Document has {pages} pages, maximum is {self.options.max_pages}",
                    field="pages",
                )

    def _process(self, data: bytes, options: ProcessOptions) -> ProcessorOutput:
        subtype = document_subtype(options.mime_type, options.file_name)
        handlers = {
            PDF: self._process_pdf,
            WORD: self._process_word,
            SPREADSHEET: self._process_spreadsheet,
            PRESENTATION: self._process_presentation,
            TEXT: self._process_text,
        }
        metadata, text = handlers[subtype](data, options)
        metadata["document_type"] = subtype

        if text is not None:
            text, truncated = self._truncate(text)
            metadata["truncated"] = truncated

        artifacts = [self._thumbnail(subtype)]
        if subtype == PDF:
            artifacts.append(self._pdf_preview(metadata.get("pages", 0)))

        return ProcessorOutput(metadata=metadata, artifacts=artifacts, text=text)

    def _truncate(self, text: str) -> Tuple[str, bool]:
        limit = self.options.text_extraction_limit
        if len(text) <= limit:
            return text, False
        return text[:limit] + TRUNCATION_MARKER, True

    def _open_pdf(self, data: bytes) -> PdfReader:
        try:
            return PdfReader(io.BytesIO(data))
        except (PdfReadError, ValueError, KeyError, OSError) as exc:
            raise ValidationError(f"Invalid PDF document: {exc}", field="data") from exc

    def _process_pdf(self, data: bytes, options: ProcessOptions) -> Tuple[Dict[str, Any], Optional[str]]:
        reader = self._open_pdf(data)
        metadata: Dict[str, Any] = {
            "pages": len(reader.pages),
            "encrypted": bool(reader.is_encrypted),
            "version": reader.pdf_header.replace("%PDF-", "") if reader.pdf_header else None,
        }
        info = reader.metadata
        if info:
            metadata["info"] = {
                key.lstrip("/"): str(value) for key, value in info.items() if value is not None
            }

        pages: List[str] = []
        for page in reader.pages:
            page_text = (page.extract_text() or "").strip()
            if page_text:
                pages.append(page_text)
        text = "\n\n".join(pages)
        metadata["pages_with_text"] = len(pages)
        metadata["text_length"] = len(text)
        return metadata, text

    def _process_word(self, data: bytes, options: ProcessOptions) -> Tuple[Dict[str, Any], Optional[str]]:
        if not zipfile.is_zipfile(io.BytesIO(data)):
            # Legacy binary .doc: no text extraction.
            return {"legacy_format": True, "text_extracted": False}, None

        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            try:
                xml_content = archive.read("word/document.xml")
            except KeyError as exc:
                raise ValidationError("Word document has no word/document.xml", field="data") from exc

        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as exc:
            raise ValidationError(f"Malformed Word document: {exc}", field="data") from exc

        paragraphs: List[str] = []
        for paragraph in root.findall(".//w:p", WORD_NAMESPACE):
            runs = [node.text or "" for node in paragraph.findall(".//w:t", WORD_NAMESPACE)]
            line = "".join(runs).strip()
            if line:
                paragraphs.append(line)
        text = "\n\n".join(paragraphs)

        metadata = {
            "paragraphs": len(paragraphs),
            "word_count": count_words(text),
            "char_count": len(text),
            "estimated_pages": max(1, math.ceil(len(text) / CHARS_PER_PAGE)),
            "text_extracted": True,
        }
        return metadata, text

    def _process_spreadsheet(self, data: bytes, options: ProcessOptions) -> Tuple[Dict[str, Any], Optional[str]]:
        ext = get_extension(options.file_name)
        if options.mime_type == "text/csv" or ext == ".csv":
            text_data, _ = decode_text(data)
            sheets = {"Sheet1": [row for row in csv.reader(io.StringIO(text_data))]}
        elif zipfile.is_zipfile(io.BytesIO(data)):
            sheets = self._read_workbook(data)
        else:
            return {"legacy_format": True, "text_extracted": False}, None

        sheet_meta = []
        chunks = []
        for name, rows in sheets.items():
            sheet_meta.append(
                {
                    "name": name,
                    "rows": len(rows),
                    "columns": max((len(row) for row in rows), default=0),
                    "sample": rows[:SHEET_SAMPLE_ROWS],
                }
            )
            body = "\n".join("\t".join(row) for row in rows)
            chunks.append(f"Sheet: {name}\n{body}")

        metadata = {
            "sheets": len(sheets),
            "sheet_names": list(sheets.keys()),
            "total_rows": sum(meta["rows"] for meta in sheet_meta),
            "sheet_data": sheet_meta,
            "text_extracted": True,
        }
        return metadata, "\n\n".join(chunks)

    def _read_workbook(self, data: bytes) -> Dict[str, List[List[str]]]:
        try:
            workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except (zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
            raise ValidationError(f"Unreadable spreadsheet: {exc}", field="data") from exc
        try:
            sheets: Dict[str, List[List[str]]] = {}
            for worksheet in workbook.worksheets:
                rows = []
                for row in worksheet.iter_rows(values_only=True):
                    cells = [_cell_to_text(value) for value in row]
                    if any(cells):
                        rows.append(cells)
                sheets[worksheet.title] = rows
            return sheets
        finally:
            workbook.close()

    def _process_presentation(self, data: bytes, options: ProcessOptions) -> Tuple[Dict[str, Any], Optional[str]]:
        if not zipfile.is_zipfile(io.BytesIO(data)):
            return {"legacy_format": True, "text_extracted": False}, None

        slide_pattern = re.compile(r"^ppt/slides/slide(\d+)\.xml$")
        slide_texts: List[str] = []
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            slide_paths = sorted(
                (name for name in archive.namelist() if slide_pattern.match(name)),
                key=lambda name: int(slide_pattern.match(name).group(1)),
            )
            for index, slide_path in enumerate(slide_paths, start=1):
                try:
                    root = ET.fromstring(archive.read(slide_path))
                except ET.ParseError:
                    self.logger.warning(f"Skipping unparseable slide {slide_path}")
                    continue
                texts = [
                    node.text.strip()
                    for node in root.iter()
                    if node.tag.endswith("}t") and node.text and node.text.strip()
                ]
                if texts:
                    slide_texts.append(f"Slide {index}:\n" + "\n".join(texts))

        metadata = {
            "slides": len(slide_paths),
            "text_extracted": bool(slide_texts),
        }
        return metadata, "\n\n".join(slide_texts)

    def _process_text(self, data: bytes, options: ProcessOptions) -> Tuple[Dict[str, Any], Optional[str]]:
        text, encoding = decode_text(data)
        metadata = {
            "line_count": len(text.splitlines()),
            "word_count": count_words(text),
            "char_count": len(text),
            "encoding": encoding,
        }
        return metadata, text

    def _thumbnail(self, subtype: str) -> DerivedArtifact:
        size = self.options.thumbnail_size
        return DerivedArtifact(
            artifact_type=ArtifactType.THUMBNAIL,
            data=render_placeholder(size, THUMBNAIL_LABELS[subtype]),
            format="png",
            width=size[0],
            height=size[1],
            label="thumbnail",
        )

    def _pdf_preview(self, pages: int) -> DerivedArtifact:
        covered = min(pages, self.options.preview_pages)
        size = self.options.preview_size
        return DerivedArtifact(
            artifact_type=ArtifactType.PREVIEW,
            data=render_placeholder(size, "PDF Preview", subtitle=f"Pages 1-{covered} of {pages}"),
            format="png",
            width=size[0],
            height=size[1],
            page_count=covered,
            label="preview",
        )
