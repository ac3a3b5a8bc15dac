from .malegislature import LegislatureClient, extract_pdf_text

__all__ = [
    "LegislatureClient",
    "extract_pdf_text",
]
