"""
Template step handler: render, and optionally write the result to a file.
"""

from __future__ import annotations

import logging
from typing import Any

from kgflow.errors import StepError, StepErrorKind

from ..models import Step, StepType
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)


class TemplateHandler(StepHandler):
    type = StepType.TEMPLATE
    error_kind = StepErrorKind.TEMPLATE

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        template, source = self.load_template(step, env)
        try:
            content = env.renderer.render(template, inputs)
        except StepError as exc:
            exc.step_id = step.id
            raise

        data: dict[str, Any] = {
            "content": content,
            "contentLength": len(content),
            "templateUsed": source,
        }
        output_path = step.config.get("outputPath")
        if output_path:
            target = env.renderer.interpolate(str(output_path), inputs)
            try:
                data["outputPath"] = env.fs.write_text(target, content)
            except OSError as exc:
                raise StepError(StepErrorKind.FILE, f"Cannot write {target}: {exc}", step_id=step.id) from exc
            logger.debug(f"[template] {step.id}: wrote {len(content)} chars to {data['outputPath']}")
        return data


__all__ = ["TemplateHandler"]
