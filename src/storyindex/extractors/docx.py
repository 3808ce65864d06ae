"""Word (.docx) decoder: python-docx, then a raw ``word/document.xml`` walk."""

from __future__ import annotations

import asyncio
import io
import warnings
import zipfile

from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from docx import Document

from storyindex.extractors.base import Attempt, ExtractionResult, ExtractorInput, Step, run_chain

# html.parser reads the WordprocessingML well enough; lxml is not a dependency.
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)


def _docx_paragraphs(data: bytes) -> list[str]:
    document = Document(io.BytesIO(data))
    return [p.text.strip() for p in document.paragraphs]


def _xml_paragraphs(data: bytes) -> list[str]:
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        xml = archive.read("word/document.xml").decode("utf-8", errors="replace")
    soup = BeautifulSoup(xml, "html.parser")
    return [
        "".join(t.get_text() for t in para.find_all("w:t")).strip()
        for para in soup.find_all("w:p")
    ]


async def _python_docx(inp: ExtractorInput) -> Attempt:
    paragraphs = await asyncio.to_thread(_docx_paragraphs, inp.data)
    return Attempt(text="\n\n".join(p for p in paragraphs if p))


async def _docx_xml(inp: ExtractorInput) -> Attempt:
    paragraphs = await asyncio.to_thread(_xml_paragraphs, inp.data)
    return Attempt(text="\n\n".join(p for p in paragraphs if p))


STEPS = [
    Step("python_docx", _python_docx),
    Step("docx_xml", _docx_xml),
]


async def extract_docx(inp: ExtractorInput) -> ExtractionResult:
    return await run_chain("docx", STEPS, inp)
