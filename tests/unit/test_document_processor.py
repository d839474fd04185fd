"""Unit tests for the document processor."""

import io

import pytest
from PIL import Image

from media_pipeline.core.config import DocumentOptions
from media_pipeline.core.exceptions import ValidationError
from media_pipeline.core.models import ArtifactType, ProcessOptions
from media_pipeline.processors.document import DocumentProcessor, decode_text, document_subtype
from media_pipeline.testing.fakes import (
    create_test_docx,
    create_test_pdf,
    create_test_pptx,
    create_test_xlsx,
)

DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PPTX = "application/vnd.openxmlformats-officedocument.presentationml.presentation"


def options(file_name, mime_type):
    return ProcessOptions(file_name=file_name, mime_type=mime_type, process_id="proc_doc")


class TestHelpers:
    @pytest.mark.parametrize(
        "mime_type, file_name, expected",
        [
            ("application/pdf", "", "pdf"),
            ("", "notes.md", "text"),
            ("application/octet-stream", "deck.pptx", "presentation"),
            ("text/csv; charset=utf-8", "", "spreadsheet"),
            ("image/png", "a.png", None),
        ],
    )
    def test_document_subtype(self, mime_type, file_name, expected):
        assert document_subtype(mime_type, file_name) == expected

    def test_decode_text(self):
        assert decode_text("héllo".encode("utf-8")) == ("héllo", "utf-8")
        assert decode_text("hi".encode("utf-16")) == ("hi", "utf-16")
        assert decode_text(b"\xff\xfa caf\xe9")[1] == "latin-1"


class TestPdf:
    """PDF handling through pypdf."""

    def test_pages_text_and_preview(self):
        data = create_test_pdf(["Hello PDF", "Second page"])
        output = DocumentProcessor().process(data, options("report.pdf", "application/pdf"))

        assert output.metadata["document_type"] == "pdf"
        assert output.metadata["pages"] == 2
        assert output.metadata["version"] == "1.4"
        assert "Hello PDF" in output.text
        assert "Second page" in output.text

        thumbnail, preview = output.artifacts
        assert thumbnail.artifact_type == ArtifactType.THUMBNAIL
        assert Image.open(io.BytesIO(thumbnail.data)).size == (300, 400)
        assert preview.artifact_type == ArtifactType.PREVIEW
        assert preview.page_count == 2

    def test_page_limit(self):
        processor = DocumentProcessor(DocumentOptions(max_pages=1))
        with pytest.raises(ValidationError) as excinfo:
            processor.validate(create_test_pdf(["a", "b"]), options("a.pdf", "application/pdf"))
        assert excinfo.value.field == "pages"

    def test_invalid_pdf(self):
        with pytest.raises(ValidationError, match="Invalid PDF"):
            DocumentProcessor().validate(b"not a pdf document", options("a.pdf", "application/pdf"))


class TestOfficeFormats:
    """Word, spreadsheet and presentation extraction."""

    def test_word(self):
        data = create_test_docx(["Hello there", "General Kenobi"])
        output = DocumentProcessor().process(data, options("letter.docx", DOCX))
        assert output.text == "Hello there\n\nGeneral Kenobi"
        assert output.metadata["paragraphs"] == 2
        assert output.metadata["word_count"] == 4
        assert output.metadata["estimated_pages"] == 1

    def test_legacy_word(self):
        output = DocumentProcessor().process(b"\xd0\xcf\x11\xe0 legacy", options("old.doc", "application/msword"))
        assert output.metadata["legacy_format"] is True
        assert output.text is None

    def test_spreadsheet(self):
        data = create_test_xlsx({"Data": [["name", "qty"], ["apple", 3]], "Empty": []})
        output = DocumentProcessor().process(data, options("stock.xlsx", XLSX))
        assert output.metadata["sheet_names"] == ["Data", "Empty"]
        assert output.metadata["total_rows"] == 2
        assert output.metadata["sheet_data"][0]["sample"] == [["name", "qty"], ["apple", "3"]]
        assert "Sheet: Data\nname\tqty\napple\t3" in output.text

    def test_csv(self):
        output = DocumentProcessor().process(b"a,b\n1,2\n", options("data.csv", "text/csv"))
        assert output.metadata["sheets"] == 1
        assert output.metadata["sheet_data"][0]["columns"] == 2
        assert output.text == "Sheet: Sheet1\na\tb\n1\t2"

    def test_presentation(self):
        data = create_test_pptx([["Title", "Subtitle"], ["Second"]])
        output = DocumentProcessor().process(data, options("deck.pptx", PPTX))
        assert output.metadata["slides"] == 2
        assert output.text == "Slide 1:\nTitle\nSubtitle\n\nSlide 2:\nSecond"


class TestText:
    def test_plain_text_counts(self):
        output = DocumentProcessor().process(b"one two\nthree\n", options("a.txt", "text/plain"))
        assert output.metadata["line_count"] == 2
        assert output.metadata["word_count"] == 3
        assert output.metadata["truncated"] is False
        assert [a.artifact_type for a in output.artifacts] == [ArtifactType.THUMBNAIL]

    def test_truncation(self):
        processor = DocumentProcessor(DocumentOptions(text_extraction_limit=5))
        output = processor.process(b"hello world", options("a.txt", "text/plain"))
        assert output.text == "hello\n[truncated]"
        assert output.metadata["truncated"] is True

    def test_unsupported_type_rejected(self):
        with pytest.raises(ValidationError, match="Unsupported document type"):
            DocumentProcessor().validate(b"data", options("a.bin", "application/octet-stream"))
