"""
PDF page counting for submissions
"""

import io
import logging
import math
from dataclasses import dataclass

from PyPDF2 import PdfReader

logger = logging.getLogger(__name__)

KB = 1000


@dataclass(frozen=True)
class PageCount:
    page_count: int
    authoritative: bool


def estimate_pages_from_size(size_bytes: int) -> int:
    """Rough page estimate when the document can't be parsed"""
    if size_bytes <= 100 * KB:
        return 1
    if size_bytes < 500 * KB:
        return max(1, math.ceil(size_bytes / (80 * KB)))  # ~80KB per page
    if size_bytes < 2000 * KB:
        return max(1, math.ceil(size_bytes / (100 * KB)))
    return max(1, math.ceil(size_bytes / (150 * KB)))


def count_pages(file_content: bytes) -> PageCount:
    """
    Count pages of a PDF.

    Args:
        file_content: raw PDF bytes

    Returns:
        PageCount; authoritative is False when the count is a size estimate
    """
    try:
        pdf_reader = PdfReader(io.BytesIO(file_content))
        page_count = len(pdf_reader.pages)
        if page_count > 0:
            return PageCount(page_count, True)
    except Exception as e:
        logger.warning(f"Could not read PDF ({len(file_content)} bytes), estimating from size: {e}")

    return PageCount(estimate_pages_from_size(len(file_content)), False)
