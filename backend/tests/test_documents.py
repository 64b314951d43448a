import io

import pytest
from PyPDF2 import PdfWriter

from documents import count_pages, estimate_pages_from_size


def blank_pdf(pages):
    writer = PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=595, height=842)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def test_counts_real_pdf_pages():
    result = count_pages(blank_pdf(3))
    assert result.page_count == 3
    assert result.authoritative


def test_unreadable_file_falls_back_to_size():
    result = count_pages(b"not a pdf at all" * 20000)
    assert not result.authoritative
    assert result.page_count == estimate_pages_from_size(320000)


@pytest.mark.parametrize("size, pages", [
    (0, 1),
    (100_000, 1),
    (160_000, 2),
    (400_000, 5),
    (1_000_000, 10),
    (3_000_000, 20),
])
def test_size_estimate(size, pages):
    assert estimate_pages_from_size(size) == pages
