"""
PDF text extraction with quality assessment and OCR fallback.

Direct extraction (pdfminer) is always tried first. When the cleaned text
scores below 0.5 the pages are rendered with pypdfium2 into a scoped
temporary directory and read with Tesseract; the better of the two (or a
hybrid of both) is returned.
"""
import os
import tempfile
from typing import Callable, List, Optional, Tuple

import pypdfium2 as pdfium
import pytesseract
from PIL import Image

from app.helpers.parsing import (
    assess_extraction_quality,
    clean_extracted_text,
    has_pdf_header,
    read_pdf_direct,
)
from app.models.models import (
    PDF_MEDIA_TYPE,
    Document,
    ExtractionMethod,
    ExtractionOptions,
    ExtractionResult,
)
from app.utils.config import ExtractionSettings
from app.utils.exceptions import ExtractionError
from app.utils.logging_config import PerformanceMonitor, get_logger

logger = get_logger(__name__)

OCR_THRESHOLD = 0.5
HYBRID_DIRECT_CEILING = 0.7
HYBRID_OCR_FLOOR = 0.3
IMAGE_BASED_THRESHOLD = 0.3
HYBRID_SEPARATOR = "\n\n--- Additional OCR Content ---\n\n"

QualityAssessor = Callable[[str], Tuple[float, List[str]]]


def resolve_ocr_available(tesseract_cmd: Optional[str] = None) -> bool:
    """Probe the Tesseract binary once; the result is a startup capability flag."""
    if tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
    try:
        version = pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, EnvironmentError) as e:
        logger.warning(f"Tesseract not available, OCR fallback disabled: {e}")
        return False
    logger.info(f"Tesseract {version} available for OCR fallback")
    return True


def render_pdf_pages(data: bytes, page_cap: int, workdir: str, scale: float) -> List[str]:
    """Render up to ``page_cap`` pages to PNG files inside ``workdir``"""
    pdf = pdfium.PdfDocument(data)
    try:
        paths = []
        for i in range(min(len(pdf), page_cap)):
            page = pdf[i]
            try:
                image = page.render(scale=scale).to_pil()
                path = os.path.join(workdir, f"page_{i + 1:03d}.png")
                image.save(path, format="PNG")
                paths.append(path)
            finally:
                page.close()
        return paths
    finally:
        pdf.close()


def ocr_image(path: str, language: str) -> str:
    with Image.open(path) as img:
        return pytesseract.image_to_string(img, lang=language) or ""


class TextExtractionEngine:
    """Multi-strategy PDF text extraction"""

    def __init__(
        self,
        settings: ExtractionSettings,
        extract_direct: Callable[[bytes], Tuple[str, int]] = read_pdf_direct,
        render_pages: Optional[Callable[[bytes, int, str], List[str]]] = None,
        ocr_page: Callable[[str, str], str] = ocr_image,
        quality_assessor: QualityAssessor = assess_extraction_quality,
    ):
        self.settings = settings
        self._extract_direct = extract_direct
        self._render_pages = render_pages or (
            lambda data, cap, workdir: render_pdf_pages(data, cap, workdir, settings.render_scale)
        )
        self._ocr_page = ocr_page
        self._assess = quality_assessor

    def _validate(self, document: Document) -> None:
        if not document.content:
            raise ExtractionError("Document is empty", filename=document.filename)
        if document.media_type != PDF_MEDIA_TYPE:
            raise ExtractionError(
                f"Unsupported media type: {document.media_type}",
                filename=document.filename,
                media_type=document.media_type,
            )
        if not has_pdf_header(document.content):
            raise ExtractionError("File is not a PDF document", filename=document.filename)

    def clean_text(self, text: str) -> str:
        return clean_extracted_text(text)

    def assess_quality(self, text: str) -> Tuple[float, List[str]]:
        return self._assess(text)

    def _read_direct(self, data: bytes, warnings: List[str]) -> Tuple[str, int]:
        try:
            return self._extract_direct(data)
        except Exception as e:
            logger.warning(f"Direct extraction failed, will try OCR: {e}")
            warnings.append("Direct text extraction failed")
            return "", 0

    def _run_ocr(self, data: bytes, max_pages: int, language: str) -> Tuple[str, int]:
        with tempfile.TemporaryDirectory(prefix="ocr_") as workdir:
            with PerformanceMonitor("OCR extraction", logger, threshold_ms=30000):
                paths = self._render_pages(data, max_pages, workdir)
                parts = []
                for n, path in enumerate(paths, start=1):
                    logger.debug(f"OCR processing page {n}/{len(paths)}")
                    parts.append(self._ocr_page(path, language))
        return "\n\n".join(parts), len(paths)

    def extract(self, document: Document, options: Optional[ExtractionOptions] = None) -> ExtractionResult:
        """Extract text from a PDF, choosing direct, OCR or hybrid output.

        Raises ExtractionError only when the document cannot be opened at
        all. Poor text is returned as a low-confidence result with warnings.
        """
        self._validate(document)
        opts = options or ExtractionOptions()
        enable_ocr = self.settings.enable_ocr if opts.enable_ocr is None else opts.enable_ocr
        max_pages = opts.max_pages or self.settings.max_pages
        language = opts.ocr_language or self.settings.ocr_language
        do_clean = self.settings.clean_text if opts.clean_text is None else opts.clean_text

        warnings: List[str] = []
        logger.info(f"Starting PDF extraction: {document.filename or '<bytes>'}")

        with PerformanceMonitor("PDF extraction", logger, threshold_ms=5000):
            raw, page_count = self._read_direct(document.content, warnings)
            text = clean_extracted_text(raw) if do_clean else raw
            confidence, quality_warnings = self._assess(text)
            warnings.extend(quality_warnings)
            if page_count == 0:
                confidence = 0.0
                warnings.append("Document contains no usable pages")
            logger.debug(f"Direct extraction: {len(text)} chars, {page_count} pages, confidence {confidence}")

            if confidence >= OCR_THRESHOLD:
                return ExtractionResult(
                    text=text, method=ExtractionMethod.DIRECT, confidence=confidence,
                    page_count=page_count, warnings=warnings,
                )

            if not enable_ocr:
                logger.info("Low quality extraction, OCR disabled")
            elif not self.settings.ocr_available:
                logger.info("Low quality extraction, OCR not available")
                warnings.append("OCR is not available")
            else:
                logger.info("Low quality text extraction, attempting OCR")
                try:
                    ocr_raw, ocr_pages = self._run_ocr(document.content, max_pages, language)
                except Exception as e:
                    logger.warning(f"OCR fallback failed: {e}")
                    warnings.append("OCR fallback failed")
                else:
                    ocr_text = clean_extracted_text(ocr_raw) if do_clean else ocr_raw
                    ocr_confidence, _ = self._assess(ocr_text)

                    if ocr_confidence > confidence:
                        logger.info("OCR produced better results, using OCR text")
                        warnings.append("Used OCR for extraction")
                        return ExtractionResult(
                            text=ocr_text, method=ExtractionMethod.OCR, confidence=ocr_confidence,
                            page_count=ocr_pages, warnings=warnings,
                        )

                    if confidence < HYBRID_DIRECT_CEILING and ocr_confidence > HYBRID_OCR_FLOOR:
                        logger.info("Using hybrid extraction (text + OCR)")
                        warnings.append("Used hybrid text + OCR extraction")
                        return ExtractionResult(
                            text=f"{text}{HYBRID_SEPARATOR}{ocr_text}",
                            method=ExtractionMethod.HYBRID,
                            confidence=max(confidence, ocr_confidence),
                            page_count=max(page_count, ocr_pages),
                            warnings=warnings,
                        )

        return ExtractionResult(
            text=text, method=ExtractionMethod.DIRECT, confidence=confidence,
            page_count=page_count, warnings=warnings,
        )

    def is_image_based(self, document: Document) -> bool:
        """Quick check whether a PDF most likely needs OCR"""
        try:
            raw, page_count = self._extract_direct(document.content)
        except Exception:
            return True
        if page_count == 0:
            return True
        text = clean_extracted_text(raw) if self.settings.clean_text else raw
        confidence, _ = self._assess(text)
        return confidence < IMAGE_BASED_THRESHOLD
