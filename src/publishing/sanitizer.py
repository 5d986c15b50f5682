"""Allow-list sanitization of submitted markup and text fields.

Body content keeps a safe subset of HTML; scripts, styles, embeds and
forms are removed together with their content, event-handler attributes
are stripped and only http(s), mailto and relative URLs survive. Text
fields (title, tags, categories, SEO fields) are reduced to plain text.
"""

from __future__ import annotations

import html as html_escape
import re
from urllib.parse import urlsplit

from lxml import etree, html

ALLOWED_TAGS = frozenset({
    "a", "abbr", "b", "blockquote", "br", "caption", "cite", "code", "dd", "del", "div", "dl", "dt",
    "em", "figcaption", "figure", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img", "ins", "li",
    "mark", "ol", "p", "pre", "q", "s", "small", "span", "strong", "sub", "sup", "table", "tbody",
    "td", "tfoot", "th", "thead", "tr", "u", "ul",
})

# Removed together with everything inside them
DROP_WITH_CONTENT = frozenset({
    "applet", "base", "button", "embed", "form", "frame", "frameset", "iframe", "input", "link",
    "math", "meta", "noscript", "object", "script", "select", "style", "svg", "template", "textarea",
})

GLOBAL_ATTRS = frozenset({"class", "id", "title", "lang", "dir"})
TAG_ATTRS: dict[str, frozenset[str]] = {
    "a": frozenset({"href", "rel", "target"}),
    "img": frozenset({"src", "alt", "width", "height"}),
    "blockquote": frozenset({"cite"}),
    "q": frozenset({"cite"}),
    "td": frozenset({"colspan", "rowspan"}),
    "th": frozenset({"colspan", "rowspan", "scope"}),
    "ol": frozenset({"start", "type"}),
}
URL_ATTRS = frozenset({"href", "src", "cite"})
SAFE_SCHEMES = frozenset({"", "http", "https", "mailto"})

_URL_NOISE = re.compile(r"[\x00-\x20]+")


def _is_safe_url(value: str) -> bool:
    cleaned = _URL_NOISE.sub("", value).lower()
    try:
        scheme = urlsplit(cleaned).scheme
    except ValueError:
        return False
    return scheme in SAFE_SCHEMES


def _clean_attributes(el: html.HtmlElement, tag: str) -> None:
    allowed = GLOBAL_ATTRS | TAG_ATTRS.get(tag, frozenset())
    for name in list(el.attrib):
        lname = name.lower()
        if lname.startswith("on") or lname not in allowed:
            del el.attrib[name]
        elif lname in URL_ATTRS and not _is_safe_url(el.attrib[name]):
            del el.attrib[name]


def _clean(parent: html.HtmlElement) -> None:
    for child in list(parent):
        if not isinstance(child.tag, str):
            # comments and processing instructions
            child.drop_tree()
            continue
        tag = child.tag.lower()
        if tag in DROP_WITH_CONTENT:
            child.drop_tree()
            continue
        _clean(child)
        if tag in ALLOWED_TAGS:
            _clean_attributes(child, tag)
        else:
            child.drop_tag()


def _parse_fragment(markup: str) -> html.HtmlElement | None:
    try:
        return html.fragment_fromstring(markup, create_parent="div")
    except (etree.ParserError, ValueError):
        return None


def sanitize_html(markup: str | None) -> str:
    """Return ``markup`` reduced to the allowed tags and attributes."""
    if not markup or not markup.strip():
        return ""
    root = _parse_fragment(markup)
    if root is None:
        return html_escape.escape(markup)
    _clean(root)
    parts = [html_escape.escape(root.text, quote=False) if root.text else ""]
    parts.extend(etree.tostring(child, encoding="unicode", method="html") for child in root)
    return "".join(parts).strip()


def sanitize_text(value: str | None) -> str:
    """Strip all markup and collapse whitespace."""
    if not value or not value.strip():
        return ""
    root = _parse_fragment(value)
    if root is None:
        return " ".join(value.split())
    for el in list(root.iter()):
        if el is not root and isinstance(el.tag, str) and el.tag.lower() in DROP_WITH_CONTENT:
            el.drop_tree()
    return " ".join(root.text_content().split())


def sanitize_terms(values: list[str] | None) -> list[str]:
    """Sanitize each term, dropping empties and duplicates while keeping order."""
    seen: set[str] = set()
    terms: list[str] = []
    for value in values or []:
        term = sanitize_text(value)
        if term and term not in seen:
            seen.add(term)
            terms.append(term)
    return terms
