"""Render registration summaries to PDF with WeasyPrint and fallbacks.

WeasyPrint is tried first.  When its native libraries are missing the
Chromium (Playwright) renderer is tried, then wkhtmltopdf through pdfkit.
Each renderer reports failure with :class:`PdfGenerationError`; when all of
them fail the messages are combined.
"""
from __future__ import annotations

import os
from typing import Callable


class PdfGenerationError(RuntimeError):
    """Raised when no PDF renderer is available."""


_WEASYPRINT_MESSAGE = (
    "Unable to generate PDF files because WeasyPrint's native dependencies "
    "are missing. Install the Pango, GObject, and Cairo libraries to enable "
    "PDF generation."
)

_CHROMIUM_MESSAGE = (
    "Unable to generate PDF files using the Chromium fallback because the "
    "Playwright dependencies are not installed. Install the Playwright package "
    "and download the Chromium browser to enable this fallback."
)

_WKHTMLTOPDF_MESSAGE = (
    "Unable to generate PDF files using the wkhtmltopdf fallback because the "
    "binary is not installed or configured. Set the WKHTMLTOPDF_CMD environment "
    "variable to the wkhtmltopdf command."
)


def _render_with_weasyprint(html: str, base_url: str | None = None) -> bytes:
    try:
        from weasyprint import HTML
        from weasyprint.text.fonts import FontConfiguration
    except (ImportError, OSError) as exc:
        raise PdfGenerationError(_WEASYPRINT_MESSAGE) from exc

    try:
        return HTML(string=html, base_url=base_url).write_pdf(
            font_config=FontConfiguration()
        )
    except OSError as exc:
        raise PdfGenerationError(_WEASYPRINT_MESSAGE) from exc


def _render_with_chromium(html: str, base_url: str | None = None) -> bytes:
    try:
        from playwright.sync_api import sync_playwright
    except ImportError as exc:
        raise PdfGenerationError(_CHROMIUM_MESSAGE) from exc

    try:
        with sync_playwright() as playwright:
            browser = playwright.chromium.launch()
            try:
                page = browser.new_page()
                page.set_content(html, wait_until="networkidle")
                return page.pdf(format="Letter", print_background=True)
            finally:
                browser.close()
    except Exception as exc:  # pragma: no cover - browser runtime failures
        raise PdfGenerationError(_CHROMIUM_MESSAGE) from exc


def _configured_wkhtmltopdf_command() -> str | None:
    """Return ``WKHTMLTOPDF_CMD`` from the environment or the app config."""

    env_value = os.environ.get("WKHTMLTOPDF_CMD")
    if env_value:
        return env_value

    from flask import current_app, has_app_context

    if not has_app_context():
        return None
    return current_app.config.get("WKHTMLTOPDF_CMD")


def _render_with_wkhtmltopdf(html: str, base_url: str | None = None) -> bytes:
    try:
        import pdfkit
    except ImportError as exc:
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc

    command = _configured_wkhtmltopdf_command()
    try:
        configuration = (
            pdfkit.configuration(wkhtmltopdf=command) if command else pdfkit.configuration()
        )
    except OSError as exc:
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc

    options: dict[str, str | None] = {"encoding": "UTF-8", "quiet": ""}
    if base_url:
        options["enable-local-file-access"] = ""

    try:
        return pdfkit.from_string(html, False, options=options, configuration=configuration)
    except Exception as exc:  # pragma: no cover - wkhtmltopdf runtime failures
        raise PdfGenerationError(_WKHTMLTOPDF_MESSAGE) from exc


RENDERERS: tuple[Callable[..., bytes], ...] = (
    _render_with_weasyprint,
    _render_with_chromium,
    _render_with_wkhtmltopdf,
)


def render_html_to_pdf(html: str, base_url: str | None = None) -> bytes:
    """Render HTML content to PDF bytes using the first working renderer."""

    errors: list[PdfGenerationError] = []
    for renderer in RENDERERS:
        try:
            return renderer(html, base_url=base_url)
        except PdfGenerationError as exc:
            errors.append(exc)

    raise PdfGenerationError(" ".join(str(error) for error in errors)) from errors[0]
