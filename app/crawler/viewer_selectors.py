from __future__ import annotations

"""Selectors and in-page scripts for the two document viewers.

The repository serves either a server-rendered viewer that exposes one text
layer per page, or a PDF.js viewer embedded in an iframe.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ViewerSelectors:
    text_mode_toggle: str = "#TEXTMODE"
    text_layer: str = ".textPageInner.TextLayer"
    text_layer_page_input: str = "#pageNum"
    text_layer_current: str = ".currentImageBoxShadow .textPageInner.TextLayer"
    embedded_iframe: str = "#pdfViewerIFrame"
    embedded_viewer: str = "#viewer.pdfViewer"
    embedded_page: str = ".page[data-page-number]"
    embedded_page_input: str = "#pageNumber"


VIEWER_SELECTORS = ViewerSelectors()

# Returns {kind, pageCount}; kind is "text_layer", "embedded_viewer" or "unknown".
DETECT_VIEWER_JS = """
() => {
  const layers = document.querySelectorAll('.textPageInner.TextLayer');
  if (layers.length > 0) {
    let pageCount = 0;
    const indicator = document.querySelector('div[style*="display: inline-block"]');
    if (indicator && indicator.textContent.includes('/')) {
      const match = indicator.textContent.match(/\\/\\s*(\\d+)/);
      pageCount = match ? parseInt(match[1], 10) : 0;
    }
    if (pageCount === 0) {
      const match = (document.body.textContent || '').match(/\\/\\s*(\\d+)/);
      pageCount = match ? parseInt(match[1], 10) : 0;
    }
    if (pageCount === 0) {
      pageCount = layers.length;
    }
    if (pageCount === 0) {
      const input = document.querySelector('#pageNum');
      if (input && input.max) {
        pageCount = parseInt(input.max, 10) || 0;
      }
    }
    if (pageCount === 0) {
      const current = document.querySelector('.currentImageBoxShadow .textPageInner.TextLayer');
      if (current && (current.textContent || '').trim().length > 10) {
        pageCount = 1;
      }
    }
    return { kind: 'text_layer', pageCount };
  }
  if (document.querySelector('#pdfViewerIFrame')) {
    return { kind: 'embedded_viewer', pageCount: 0 };
  }
  return { kind: 'unknown', pageCount: 0 };
}
"""

SET_TEXT_LAYER_PAGE_JS = """
(target) => {
  const input = document.querySelector('#pageNum');
  if (!input) return false;
  input.focus();
  input.select();
  input.value = String(target);
  input.dispatchEvent(new Event('input', { bubbles: true }));
  input.dispatchEvent(new Event('change', { bubbles: true }));
  input.dispatchEvent(new KeyboardEvent('keypress', { key: 'Enter', keyCode: 13, bubbles: true }));
  return true;
}
"""

READ_TEXT_LAYER_PAGE_JS = """
(minChars) => {
  const current = document.querySelector('.currentImageBoxShadow .textPageInner.TextLayer');
  if (current) {
    return (current.textContent || current.innerText || '').trim();
  }
  for (const layer of document.querySelectorAll('.textPageInner.TextLayer')) {
    const text = (layer.textContent || layer.innerText || '').trim();
    if (text.length > minChars) return text;
  }
  return '';
}
"""

EMBEDDED_READY_JS = """
() => {
  const viewer = document.querySelector('#viewer.pdfViewer');
  const pages = document.querySelectorAll('.page[data-page-number]');
  return Boolean(viewer) && pages.length > 0;
}
"""

EMBEDDED_PAGE_COUNT_JS = """
() => document.querySelectorAll('.page[data-page-number]').length
"""

SET_EMBEDDED_PAGE_JS = """
(target) => {
  const input = document.querySelector('#pageNumber');
  if (!input) return false;
  input.focus();
  input.value = String(target);
  input.dispatchEvent(new Event('change', { bubbles: true }));
  input.dispatchEvent(new KeyboardEvent('keydown', { key: 'Enter', bubbles: true }));
  return true;
}
"""

READ_EMBEDDED_PAGE_JS = """
([target, minChars]) => {
  const page = document.querySelector(`.page[data-page-number="${target}"]`);
  if (!page) return '';
  const parts = [];
  page.querySelectorAll('.textLayer span[role="presentation"]').forEach((span) => {
    const text = span.textContent || span.innerText || '';
    if (text.trim()) parts.push(text);
  });
  const joined = parts.join(' ').trim();
  return joined.length > minChars ? joined : '';
}
"""

__all__ = [
    "DETECT_VIEWER_JS",
    "EMBEDDED_PAGE_COUNT_JS",
    "EMBEDDED_READY_JS",
    "READ_EMBEDDED_PAGE_JS",
    "READ_TEXT_LAYER_PAGE_JS",
    "SET_EMBEDDED_PAGE_JS",
    "SET_TEXT_LAYER_PAGE_JS",
    "VIEWER_SELECTORS",
    "ViewerSelectors",
]
