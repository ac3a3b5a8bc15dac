import asyncio
import io
import logging
from typing import Any, Optional

import httpx
import pdfplumber

from muni_core.exceptions import NotFoundError, TransientError
from muni_core.models import FetchedPage

logger = logging.getLogger(__name__)

# API Configuration
DEFAULT_BASE_URL: str = "https://malegislature.gov"
DEFAULT_SESSION: str = "194"
API_TIMEOUT: float = 30.0
USER_AGENT: str = "Municipal-Brief-Tracker/1.0"

# PDF text density threshold (chars per page) below which the PDF is treated as scanned images
PDF_IMAGE_THRESHOLD: int = 100


def extract_pdf_text(pdf_bytes: bytes) -> Optional[str]:
    """
    Pull raw text out of a bill PDF.

    Returns None for empty or image-only PDFs; absence of text is normal and
    downstream stages fall back to the status text.
    """
    text: str = ""
    char_count: int = 0
    with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
        num_pages = len(pdf.pages)
        for page in pdf.pages:
            page_text = page.extract_text()
            if page_text:
                text += page_text + "\n"
                char_count += len(page_text)

        avg_chars_per_page = char_count / max(num_pages, 1)
        is_image_based = num_pages > 0 and avg_chars_per_page < PDF_IMAGE_THRESHOLD

    if is_image_based:
        logger.warning("PDF appears to be scanned images (%.0f chars/page)", avg_chars_per_page)
        return None
    if not text.strip():
        return None
    return text


class LegislatureClient:
    """
    Fetch and document-text collaborator for malegislature.gov.

    fetch_bill_page distinguishes a missing bill (NotFoundError) from an
    unavailable site (TransientError). fetch_full_text never raises: a bill
    without a usable PDF just has no full text.

    Usage:
        async with LegislatureClient(config["source"]) as client:
            page = await client.fetch_bill_page("H1")
    """

    def __init__(self, source_config: Optional[dict[str, Any]] = None, http: Optional[httpx.AsyncClient] = None):
        source_config = source_config or {}
        self.base_url = source_config.get("base_url", DEFAULT_BASE_URL).rstrip("/")
        self.session = str(source_config.get("session", DEFAULT_SESSION))
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            timeout=source_config.get("timeout", API_TIMEOUT),
            headers={"User-Agent": source_config.get("user_agent", USER_AGENT)},
            follow_redirects=True,
        )

    async def __aenter__(self) -> "LegislatureClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def bill_url(self, bill_number: str) -> str:
        return f"{self.base_url}/Bills/{self.session}/{bill_number}"

    async def fetch_bill_page(self, bill_number: str) -> FetchedPage:
        url = self.bill_url(bill_number)
        logger.debug("Fetching bill page %s", url)
        try:
            response = await self._http.get(url)
        except httpx.TimeoutException as e:
            raise TransientError(f"timeout fetching {url}: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"network error fetching {url}: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{bill_number} does not exist in session {self.session}")
        if response.status_code >= 400:
            raise TransientError(f"HTTP {response.status_code} fetching {url}")
        return FetchedPage(html=response.text, url=str(response.url))

    async def fetch_full_text(self, bill_number: str) -> Optional[str]:
        pdf_url = f"{self.bill_url(bill_number)}.pdf"
        try:
            response = await self._http.get(pdf_url)
            if response.status_code != 200:
                logger.info("No bill PDF for %s (HTTP %d)", bill_number, response.status_code)
                return None
            text = await asyncio.to_thread(extract_pdf_text, response.content)
        except httpx.HTTPError as e:
            logger.warning("Could not fetch bill PDF for %s: %s", bill_number, e)
            return None
        except Exception as e:  # pdfplumber/pdfminer raise a wide range of parser errors
            logger.warning("Could not parse bill PDF for %s: %s", bill_number, e)
            return None

        if text:
            logger.info("Extracted %d characters of bill text for %s", len(text), bill_number)
        return text
