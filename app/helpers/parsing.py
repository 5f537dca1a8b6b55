import io
import re
from typing import List, Tuple

from pdfminer.high_level import extract_text as pdf_extract
from pdfminer.pdfpage import PDFPage

from app.utils.logging_config import get_logger

logger = get_logger(__name__)

MIN_TEXT_LENGTH = 50
MIN_WORD_COUNT = 20
MAX_GIBBERISH_RATIO = 0.3
GIBBERISH_PATTERN = re.compile(r"[^\x20-\x7E\n\r\t]")

RESUME_INDICATORS = [
    re.compile(r"experience", re.IGNORECASE),
    re.compile(r"education", re.IGNORECASE),
    re.compile(r"skills?", re.IGNORECASE),
    re.compile(r"work|employment", re.IGNORECASE),
    re.compile(r"email|phone|contact", re.IGNORECASE),
]

# (pattern, replacement) applied in order
_LATEX = [
    (re.compile(r"\\[a-zA-Z]+\{[^}]*\}"), ""),
    (re.compile(r"\\[a-zA-Z]+"), ""),
    (re.compile(r"\$[^$]+\$"), ""),
    (re.compile(r"[{}]"), ""),
]
_MOJIBAKE = [
    ("â€™", "'"),
    ("â€œ", '"'),
    ("â€\x9d", '"'),
    ('â€"', "-"),
    ("â€“", "-"),
    ("â€¢", "•"),
    ("Â ", " "),
]
_TYPOGRAPHY = [
    (re.compile(r"[\u2018\u2019]"), "'"),
    (re.compile(r"[\u201c\u201d]"), '"'),
    (re.compile(r"[\u2013\u2014]"), "-"),
]
_CONTROL_CHARS = re.compile(r"[\x00-\x09\x0B\x0C\x0E-\x1F\x7F]")


def clean_extracted_text(text: str) -> str:
    """Normalize raw PDF text.

    Strips LaTeX residue, normalizes line endings and whitespace, drops
    control characters, repairs common UTF-8-as-Latin-1 mojibake and
    straightens typographic quotes and dashes.
    """
    if not text:
        return ""
    x = text
    for pattern, repl in _LATEX:
        x = pattern.sub(repl, x)

    x = x.replace("\r\n", "\n").replace("\r", "\n")
    x = re.sub(r"[ \t]+", " ", x)
    x = re.sub(r"\n{3,}", "\n\n", x)
    x = _CONTROL_CHARS.sub("", x)

    for bad, good in _MOJIBAKE:
        x = x.replace(bad, good)
    for pattern, repl in _TYPOGRAPHY:
        x = pattern.sub(repl, x)
    return x.strip()


def count_words(text: str) -> int:
    return len([w for w in re.split(r"\s+", text) if len(w) > 1])


def assess_extraction_quality(text: str) -> Tuple[float, List[str]]:
    """Heuristic confidence in [0, 1] that ``text`` is a usable resume, plus warnings"""
    if not text or not text.strip():
        return 0.0, ["No text could be extracted"]

    warnings: List[str] = []
    score = 1.0

    if len(text) < MIN_TEXT_LENGTH:
        score -= 0.4
        warnings.append("Extracted text is very short")

    word_count = count_words(text)
    if word_count < MIN_WORD_COUNT:
        score -= 0.3
        warnings.append(f"Low word count: {word_count}")

    gibberish_ratio = len(GIBBERISH_PATTERN.findall(text)) / max(len(text), 1)
    if gibberish_ratio > MAX_GIBBERISH_RATIO:
        score -= 0.3
        warnings.append("High proportion of unrecognized characters")

    indicators = sum(1 for p in RESUME_INDICATORS if p.search(text))
    if indicators < 2:
        score -= 0.2
        warnings.append("Missing typical resume sections")

    return round(max(0.0, min(1.0, score)), 4), warnings


def has_pdf_header(data: bytes) -> bool:
    return b"%PDF-" in data[:1024]


def count_pdf_pages(data: bytes) -> int:
    return sum(1 for _ in PDFPage.get_pages(io.BytesIO(data)))


def read_pdf_direct(data: bytes) -> Tuple[str, int]:
    """Text layer and page count via pdfminer. Raises whatever pdfminer raises."""
    text = pdf_extract(io.BytesIO(data))
    return text or "", count_pdf_pages(data)
