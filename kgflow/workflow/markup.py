"""
Markdown conversion for output steps.

Output steps render markdown first and convert it here. The converter
covers the block forms reports use: ATX headings, paragraphs, bullet and
numbered lists, fenced code, horizontal rules and pipe tables, plus inline
bold, italic, code and links. Document shells are Jinja2 templates.
"""

from __future__ import annotations

import html
import math
import re
from typing import Any

from jinja2 import Environment

_HEADING = re.compile(r"^(#{1,6})\s+(.*?)\s*#*\s*$")
_BULLET = re.compile(r"^\s*[-*+]\s+(.*)$")
_NUMBERED = re.compile(r"^\s*\d+[.)]\s+(.*)$")
_RULE = re.compile(r"^\s*([-*_])(\s*\1){2,}\s*$")
_TABLE_SEPARATOR = re.compile(r"^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$")

_INLINE_CODE = re.compile(r"`([^`]+)`")
_BOLD = re.compile(r"\*\*(.+?)\*\*|__(.+?)__")
_ITALIC = re.compile(r"\*(.+?)\*|\b_(.+?)_\b")
_LINK = re.compile(r"\[([^\]]+)\]\(([^)\s]+)\)")

CHARS_PER_PAGE = 3000

_shells = Environment(autoescape=False, keep_trailing_newline=True)

HTML_SHELL = _shells.from_string(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{{ title }}</title>
  <style>
    body { font-family: sans-serif; max-width: 900px; margin: 0 auto; padding: 2rem; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f5f5f5; }
  </style>
</head>
<body>
{{ body }}
</body>
</html>
"""
)

DOCX_SHELL = _shells.from_string(
    """<!DOCTYPE html>
<html xmlns:o="urn:schemas-microsoft-com:office:office"
      xmlns:w="urn:schemas-microsoft-com:office:word"
      xmlns="http://www.w3.org/TR/REC-html40">
<head>
  <meta charset="utf-8">
  <title>{{ title }}</title>
  <!--[if gte mso 9]>
  <xml><w:WordDocument><w:View>Print</w:View><w:Zoom>100</w:Zoom></w:WordDocument></xml>
  <![endif]-->
  <style>
    @page { size: 8.5in 11.0in; margin: 1in; }
    body { font-family: Calibri, sans-serif; font-size: 11pt; line-height: 1.6; }
    h1, h2, h3 { page-break-after: avoid; }
    table { border-collapse: collapse; width: 100%; }
    th, td { border: 1px solid #ddd; padding: 8pt; text-align: left; }
  </style>
</head>
<body>
{{ body }}
<p class="generated">Generated {{ generated }}</p>
</body>
</html>
"""
)

PPTX_SHELL = _shells.from_string(
    """<!DOCTYPE html>
<html>
<head>
  <meta charset="UTF-8">
  <title>{{ title }}</title>
  <style>
    body { font-family: 'Segoe UI', Calibri, Arial, sans-serif; background: #eee; }
    .slide { width: 1024px; height: 768px; margin: 20px auto; padding: 60px;
             background: white; page-break-after: always; position: relative; }
    .title-slide { text-align: center; }
    .slide-number { position: absolute; bottom: 20px; right: 30px; color: #666; }
  </style>
</head>
<body>
{% for slide in slides %}
  <div class="slide{% if loop.first %} title-slide{% endif %}">
{{ slide }}
    <div class="slide-number">{{ loop.index }}</div>
  </div>
{% endfor %}
</body>
</html>
"""
)

LATEX_PREAMBLE = r"""\documentclass[11pt]{article}
\usepackage[utf8]{inputenc}
\usepackage[T1]{fontenc}
\usepackage{booktabs}
\usepackage{hyperref}
\usepackage[margin=1in]{geometry}

\begin{document}

"""


def strip_front_matter(markdown: str) -> str:
    if markdown.startswith("---"):
        end = markdown.find("\n---", 3)
        if end != -1:
            return markdown[end + 4 :].lstrip("\n")
    return markdown


def estimate_pages(text: str) -> int:
    return max(1, math.ceil(len(text) / CHARS_PER_PAGE))


def document_title(markdown: str, default: str = "Generated Document") -> str:
    for line in markdown.splitlines():
        match = _HEADING.match(line)
        if match and len(match.group(1)) == 1:
            return match.group(2)
    return default


# =============================================================================
# Block parsing
# =============================================================================


def _blocks(markdown: str) -> list[tuple[str, Any]]:
    """Split markdown into (kind, payload) blocks."""
    lines = strip_front_matter(markdown).splitlines()
    blocks: list[tuple[str, Any]] = []
    paragraph: list[str] = []
    i = 0

    def flush() -> None:
        if paragraph:
            blocks.append(("p", " ".join(s.strip() for s in paragraph)))
            paragraph.clear()

    while i < len(lines):
        line = lines[i]
        if line.strip().startswith("```"):
            flush()
            code = []
            i += 1
            while i < len(lines) and not lines[i].strip().startswith("```"):
                code.append(lines[i])
                i += 1
            blocks.append(("code", "\n".join(code)))
            i += 1
            continue
        if not line.strip():
            flush()
        elif _HEADING.match(line):
            flush()
            match = _HEADING.match(line)
            blocks.append(("h", (len(match.group(1)), match.group(2))))
        elif _RULE.match(line):
            flush()
            blocks.append(("hr", None))
        elif "|" in line and i + 1 < len(lines) and _TABLE_SEPARATOR.match(lines[i + 1]):
            flush()
            header = _cells(line)
            rows = []
            i += 2
            while i < len(lines) and "|" in lines[i] and lines[i].strip():
                rows.append(_cells(lines[i]))
                i += 1
            blocks.append(("table", (header, rows)))
            continue
        elif _BULLET.match(line) or _NUMBERED.match(line):
            flush()
            ordered = _BULLET.match(line) is None
            pattern = _NUMBERED if ordered else _BULLET
            items = []
            while i < len(lines) and pattern.match(lines[i]):
                items.append(pattern.match(lines[i]).group(1))
                i += 1
            blocks.append(("ol" if ordered else "ul", items))
            continue
        else:
            paragraph.append(line)
        i += 1
    flush()
    return blocks


def _cells(line: str) -> list[str]:
    return [cell.strip() for cell in line.strip().strip("|").split("|")]


# =============================================================================
# HTML
# =============================================================================


def inline_html(text: str) -> str:
    text = html.escape(text, quote=False)
    text = _INLINE_CODE.sub(lambda m: f"<code>{m.group(1)}</code>", text)
    text = _BOLD.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", text)
    text = _ITALIC.sub(lambda m: f"<em>{m.group(1) or m.group(2)}</em>", text)
    return _LINK.sub(lambda m: f'<a href="{m.group(2)}">{m.group(1)}</a>', text)


def _block_html(kind: str, payload: Any) -> str:
    if kind == "h":
        level, text = payload
        return f"<h{level}>{inline_html(text)}</h{level}>"
    if kind == "p":
        return f"<p>{inline_html(payload)}</p>"
    if kind == "code":
        return f"<pre><code>{html.escape(payload, quote=False)}</code></pre>"
    if kind == "hr":
        return "<hr>"
    if kind in ("ul", "ol"):
        items = "".join(f"<li>{inline_html(item)}</li>" for item in payload)
        return f"<{kind}>{items}</{kind}>"
    header, rows = payload
    head = "".join(f"<th>{inline_html(c)}</th>" for c in header)
    body = "".join("<tr>" + "".join(f"<td>{inline_html(c)}</td>" for c in row) + "</tr>" for row in rows)
    return f"<table><thead><tr>{head}</tr></thead><tbody>{body}</tbody></table>"


def markdown_to_html(markdown: str) -> str:
    """HTML fragment for ``markdown``."""
    return "\n".join(_block_html(kind, payload) for kind, payload in _blocks(markdown))


def html_document(markdown: str) -> str:
    return HTML_SHELL.render(title=html.escape(document_title(markdown)), body=markdown_to_html(markdown))


def docx_document(markdown: str, generated: str) -> str:
    return DOCX_SHELL.render(
        title=html.escape(document_title(markdown, "Document")),
        body=markdown_to_html(markdown),
        generated=generated,
    )


def pptx_document(markdown: str) -> tuple[str, int]:
    """Slide deck; each level 1 or 2 heading starts a slide. Returns (html, slides)."""
    slides: list[list[str]] = []
    for kind, payload in _blocks(markdown):
        if kind == "h" and payload[0] <= 2 or not slides:
            slides.append([])
        slides[-1].append(_block_html(kind, payload))
    if not slides:
        slides = [[f"<h1>{html.escape(document_title(markdown, 'Presentation'))}</h1>"]]
    rendered = PPTX_SHELL.render(
        title=html.escape(document_title(markdown, "Presentation")),
        slides=["\n".join(parts) for parts in slides],
    )
    return rendered, len(slides)


# =============================================================================
# LaTeX
# =============================================================================

_LATEX_SPECIALS = {
    "\\": r"\textbackslash{}",
    "&": r"\&",
    "%": r"\%",
    "$": r"\$",
    "#": r"\#",
    "_": r"\_",
    "{": r"\{",
    "}": r"\}",
    "~": r"\textasciitilde{}",
    "^": r"\textasciicircum{}",
}
_LATEX_ESCAPE = re.compile("|".join(re.escape(c) for c in _LATEX_SPECIALS))
_SECTIONS = {1: "section", 2: "subsection", 3: "subsubsection"}


def latex_escape(text: str) -> str:
    return _LATEX_ESCAPE.sub(lambda m: _LATEX_SPECIALS[m.group(0)], text)


def inline_latex(text: str) -> str:
    # Escape first, then map the (escape-safe) markdown markers
    text = latex_escape(text)
    text = _INLINE_CODE.sub(lambda m: f"\\texttt{{{m.group(1)}}}", text)
    text = re.sub(r"\*\*(.+?)\*\*", r"\\textbf{\1}", text)
    return re.sub(r"\*(.+?)\*", r"\\textit{\1}", text)


def markdown_to_latex(markdown: str) -> str:
    parts = []
    for kind, payload in _blocks(markdown):
        if kind == "h":
            level, text = payload
            section = _SECTIONS.get(level, "paragraph")
            parts.append(f"\\{section}{{{inline_latex(text)}}}")
        elif kind == "p":
            parts.append(inline_latex(payload))
        elif kind == "code":
            parts.append(f"\\begin{{verbatim}}\n{payload}\n\\end{{verbatim}}")
        elif kind == "hr":
            parts.append("\\bigskip\\hrule\\bigskip")
        elif kind in ("ul", "ol"):
            env = "itemize" if kind == "ul" else "enumerate"
            items = "\n".join(f"  \\item {inline_latex(item)}" for item in payload)
            parts.append(f"\\begin{{{env}}}\n{items}\n\\end{{{env}}}")
        else:
            header, rows = payload
            spec = "l" * len(header)
            lines = [" & ".join(inline_latex(c) for c in header) + r" \\", r"\midrule"]
            lines += [" & ".join(inline_latex(c) for c in row) + r" \\" for row in rows]
            body = "\n".join(lines)
            parts.append(f"\\begin{{tabular}}{{{spec}}}\n\\toprule\n{body}\n\\bottomrule\n\\end{{tabular}}")
    return LATEX_PREAMBLE + "\n\n".join(parts) + "\n\n\\end{document}\n"


__all__ = [
    "docx_document",
    "estimate_pages",
    "html_document",
    "latex_escape",
    "markdown_to_html",
    "markdown_to_latex",
    "pptx_document",
    "strip_front_matter",
]
