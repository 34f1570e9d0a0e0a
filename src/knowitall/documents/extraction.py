"""Text extraction from uploaded document bytes."""

import io
from typing import Optional

import docx  # python-docx
from pypdf import PdfReader

from knowitall.errors import ErrorKind, KnowItAllError
from knowitall.utils.logger import get_logger

logger = get_logger()

PDF_CONTENT_TYPE = "application/pdf"
DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_CONTENT_TYPES = ("text/plain", "text/markdown")


class TextExtractor:
    """Turns PDF, DOCX and plain-text uploads into a single text string."""

    SUPPORTED_CONTENT_TYPES = (PDF_CONTENT_TYPE, DOCX_CONTENT_TYPE) + TEXT_CONTENT_TYPES

    def extract(
        self,
        data: bytes,
        content_type: str,
        filename: Optional[str] = None
    ) -> str:
        """
        Extract text from document bytes.

        Args:
            data: Raw file content
            content_type: MIME type of the upload
            filename: Original filename, used for log messages only

        Returns:
            Extracted text (may be empty if the document has no text layer)

        Raises:
            KnowItAllError: EXTRACTION_FAILURE for unsupported types or unreadable files
        """
        content_type = (content_type or "").split(";")[0].strip().lower()
        name = filename or "<upload>"

        if content_type not in self.SUPPORTED_CONTENT_TYPES:
            raise KnowItAllError(
                ErrorKind.EXTRACTION_FAILURE,
                f"Unsupported content type: {content_type or 'unknown'}"
            )

        try:
            if content_type == PDF_CONTENT_TYPE:
                text = self._extract_pdf(data)
            elif content_type == DOCX_CONTENT_TYPE:
                text = self._extract_docx(data)
            else:
                text = data.decode("utf-8", errors="replace")
        except Exception as e:
            logger.error(f"Text extraction failed for {name}: {e}")
            raise KnowItAllError(
                ErrorKind.EXTRACTION_FAILURE,
                f"Could not read {content_type} document: {e}"
            ) from e

        logger.info(f"Extracted {len(text)} characters from {name}")
        return text

    def _extract_pdf(self, data: bytes) -> str:
        reader = PdfReader(io.BytesIO(data))
        pages = []
        for page_number, page in enumerate(reader.pages, 1):
            page_text = page.extract_text() or ""
            if page_text.strip():
                pages.append(page_text)
            else:
                logger.debug(f"Skipping empty PDF page {page_number}")
        return "\n\n".join(pages)

    def _extract_docx(self, data: bytes) -> str:
        document = docx.Document(io.BytesIO(data))
        return "\n".join(p.text for p in document.paragraphs if p.text and not p.text.isspace())


# Singleton instance
_extractor: Optional[TextExtractor] = None


def get_extractor() -> TextExtractor:
    """Get or create the global text extractor."""
    global _extractor
    if _extractor is None:
        _extractor = TextExtractor()
    return _extractor
