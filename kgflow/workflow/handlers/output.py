"""
Output step handler: render markdown, convert it to the requested format and
write the document.

Formats and where they are written:
    markdown   outputPath as given
    html       outputPath as given
    latex      outputPath as given
    docx-html  outputPath with .docx replaced by .doc (Word opens HTML .doc files)
    pptx-html  outputPath with .pptx replaced by -presentation.html
    auto       chosen from the outputPath extension

``pages`` is the slide count for pptx-html and an estimate (3000
characters per page) otherwise.
"""

from __future__ import annotations

import logging
import posixpath
import re
from typing import Any

from kgflow.errors import StepError, StepErrorKind

from .. import markup
from ..models import Step, StepType
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)

EXTENSION_FORMATS = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".txt": "markdown",
    ".html": "html",
    ".htm": "html",
    ".tex": "latex",
    ".latex": "latex",
    ".doc": "docx-html",
    ".docx": "docx-html",
    ".ppt": "pptx-html",
    ".pptx": "pptx-html",
    ".xls": "xlsx",
    ".xlsx": "xlsx",
}


def format_for_path(path: str) -> str:
    return EXTENSION_FORMATS.get(posixpath.splitext(path)[1].lower(), "markdown")


class OutputHandler(StepHandler):
    type = StepType.OUTPUT
    error_kind = StepErrorKind.OUTPUT

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        template, source = self.load_template(step, env)
        try:
            content = env.renderer.render(template, inputs)
        except StepError as exc:
            exc.step_id = step.id
            raise

        output_path = env.renderer.interpolate(str(step.config["outputPath"]), inputs)
        requested = str(step.config.get("format", "auto")).lower()
        fmt = format_for_path(output_path) if requested == "auto" else requested

        pages: int | None = None
        if fmt == "markdown":
            document = content
        elif fmt == "html":
            document = markup.html_document(content)
        elif fmt == "latex":
            document = markup.markdown_to_latex(content)
        elif fmt == "docx-html":
            document = markup.docx_document(content, generated=env.clock.isoformat())
            output_path = re.sub(r"\.docx$", ".doc", output_path, flags=re.IGNORECASE)
        elif fmt == "pptx-html":
            document, pages = markup.pptx_document(content)
            output_path = re.sub(r"\.pptx?$", "-presentation.html", output_path, flags=re.IGNORECASE)
        else:
            raise self.fail(step, f"Output format '{fmt}' is not supported")

        try:
            written = env.fs.write_text(output_path, document)
        except OSError as exc:
            raise self.fail(step, f"Cannot write {output_path}: {exc}") from exc

        logger.debug(f"[output] {step.id}: {fmt} document of {len(document)} chars at {written}")
        return {
            "outputPath": written,
            "format": fmt,
            "contentLength": len(document),
            "pages": pages if pages is not None else markup.estimate_pages(document),
            "templateUsed": source,
        }


__all__ = ["EXTENSION_FORMATS", "OutputHandler", "format_for_path"]
