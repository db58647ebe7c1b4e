"""
PDF option defaults and translation to Playwright's ``page.pdf()`` keyword arguments.

Callers send Puppeteer style camelCase options (``printBackground``,
``preferCSSPageSize``...). They are merged over the defaults as-is and only
translated to Playwright's snake_case arguments right before rasterizing.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_PDF_OPTIONS: dict[str, Any] = {
    "format": "A4",
    "printBackground": True,
    "margin": {
        "top": "20px",
        "right": "20px",
        "bottom": "20px",
        "left": "20px",
    },
}

# camelCase option name -> Playwright page.pdf() keyword
PLAYWRIGHT_PDF_KEYWORDS: dict[str, str] = {
    "format": "format",
    "printBackground": "print_background",
    "margin": "margin",
    "landscape": "landscape",
    "scale": "scale",
    "width": "width",
    "height": "height",
    "pageRanges": "page_ranges",
    "preferCSSPageSize": "prefer_css_page_size",
    "displayHeaderFooter": "display_header_footer",
    "headerTemplate": "header_template",
    "footerTemplate": "footer_template",
    "outline": "outline",
    "tagged": "tagged",
}

MARGIN_SIDES = ("top", "right", "bottom", "left")


def merge_pdf_options(overrides: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Shallow-merge caller options over DEFAULT_PDF_OPTIONS.

    The caller wins per top-level key, so ``{"format": "Letter"}`` keeps the
    default margins while ``{"margin": {"top": "0"}}`` replaces all of them.
    Keys whose value is None are ignored.
    """
    merged = copy.deepcopy(DEFAULT_PDF_OPTIONS)
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})
    return merged


def to_playwright_pdf_kwargs(options: Mapping[str, Any]) -> dict[str, Any]:
    """Translate merged camelCase options into keyword arguments for ``Page.pdf()``."""
    kwargs: dict[str, Any] = {}
    for key, value in options.items():
        keyword = PLAYWRIGHT_PDF_KEYWORDS.get(key)
        if keyword is None:
            logger.debug("Ignoring unsupported PDF option: %s", key)
            continue
        if keyword == "margin" and isinstance(value, Mapping):
            value = {side: value[side] for side in MARGIN_SIDES if value.get(side) is not None}
        kwargs[keyword] = value
    return kwargs
