from __future__ import annotations

import html
import re

from bs4.element import NavigableString, Tag

_BLANK_LINES_RE = re.compile(r"\n{3,}")
_SKIPPED_TAGS = {"style", "script", "noscript", "template"}


def normalize_text(text: str) -> str:
    return " ".join(text.split())


def render_list(tag: Tag, depth: int = 0) -> str:
    bullet = "-" if tag.name == "ul" else "1."
    lines = []
    for li in tag.find_all("li", recursive=False):
        prefix = "  " * depth + f"{bullet} "
        body_parts = []
        for child in li.children:
            if isinstance(child, Tag) and child.name in ("ul", "ol"):
                continue
            rendered = element_to_md(child, depth=depth + 1)
            if rendered:
                body_parts.append(rendered.strip())
        lines.append(prefix + " ".join(body_parts).strip())
        for nested in li.find_all(["ul", "ol"], recursive=False):
            lines.append(render_list(nested, depth=depth + 1))
    return "\n".join(lines)


def render_table(tag: Tag) -> str:
    rows = []
    headers = tag.find_all("th")
    if headers:
        header_cells = [normalize_text(th.get_text(" ", strip=True)) for th in headers]
        rows.append("| " + " | ".join(header_cells) + " |")
        rows.append("|" + "|".join([" --- " for _ in header_cells]) + "|")
    for tr in tag.find_all("tr"):
        cells = [normalize_text(td.get_text(" ", strip=True)) for td in tr.find_all("td", recursive=False)]
        if cells:
            rows.append("| " + " | ".join(cells) + " |")
    return "\n".join(rows)


def element_to_md(node, depth: int = 0) -> str:
    if isinstance(node, NavigableString):
        return normalize_text(str(node))
    if not isinstance(node, Tag):
        return ""

    name = node.name.lower()
    if name in _SKIPPED_TAGS:
        return ""

    if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
        level = int(name[1])
        heading = "#" * level + " " + normalize_text(node.get_text(" ", strip=True))
        return "\n\n" + heading + "\n\n"
    if name == "p":
        parts = [element_to_md(child, depth=depth) for child in node.children]
        return " ".join(part for part in parts if part) + "\n\n"
    if name == "br":
        return "\n"
    if name in ("ul", "ol"):
        return "\n\n" + render_list(node) + "\n\n"
    if name == "table":
        return "\n\n" + render_table(node) + "\n\n"
    if name in ("strong", "b"):
        text = normalize_text(node.get_text(" ", strip=True))
        return f"**{text}**" if text else ""
    if name in ("em", "i"):
        text = normalize_text(node.get_text(" ", strip=True))
        return f"*{text}*" if text else ""
    if name == "pre":
        return f"\n\n```\n{html.unescape(node.get_text('', strip=False))}\n```\n\n"
    if name == "a":
        href = node.get("href", "")
        text = normalize_text(node.get_text(" ", strip=True))
        if not text:
            return ""
        return f"[{text}]({href})" if href else text

    # Generic container: render children
    rendered_children = [element_to_md(child, depth=depth) for child in node.children]
    return " ".join(child for child in rendered_children if child)


def html_to_markdown(nodes: list[Tag]) -> str:
    """Render a list of selected elements as one markdown document."""
    rendered = "\n\n".join(element_to_md(node) for node in nodes)
    lines = [line.strip() if not line.startswith("  ") else line.rstrip() for line in rendered.splitlines()]
    text = "\n".join(lines)
    return _BLANK_LINES_RE.sub("\n\n", text).strip()
