"""
File step handler.

Operations:
    read    filePath                      -> content, contentLength
    write   filePath, content             -> contentLength, rendered
    copy    sourcePath, targetPath        -> sourcePath, targetPath
    move    sourcePath, targetPath        -> sourcePath, targetPath
    delete  filePath                      -> filePath

Paths and written content are interpolated with the step inputs. Parent
directories are created on write, copy and move.
"""

from __future__ import annotations

import logging
from typing import Any

from kgflow.errors import StepErrorKind

from ..models import Step, StepType
from ..templating import has_markup
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)


class FileHandler(StepHandler):
    type = StepType.FILE
    error_kind = StepErrorKind.FILE

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        config = step.config
        operation = str(config.get("operation", "")).lower()

        def path(key: str) -> str:
            return env.renderer.interpolate(str(config.get(key, "")), inputs)

        try:
            if operation == "read":
                file_path = path("filePath")
                content = env.fs.read_text(file_path)
                return {
                    "operation": operation,
                    "filePath": env.fs.resolve(file_path),
                    "content": content,
                    "contentLength": len(content),
                }

            if operation == "write":
                raw = config.get("content", "")
                raw = raw if isinstance(raw, str) else str(raw)
                rendered = has_markup(raw)
                content = env.renderer.render(raw, inputs) if rendered else raw
                written = env.fs.write_text(path("filePath"), content)
                return {
                    "operation": operation,
                    "filePath": written,
                    "contentLength": len(content),
                    "rendered": rendered,
                }

            if operation in ("copy", "move"):
                source = path("sourcePath")
                target = path("targetPath") if config.get("targetPath") else path("filePath")
                transfer = env.fs.copy if operation == "copy" else env.fs.move
                return {
                    "operation": operation,
                    "sourcePath": env.fs.resolve(source),
                    "targetPath": transfer(source, target),
                }

            if operation == "delete":
                file_path = path("filePath")
                env.fs.delete(file_path)
                return {"operation": operation, "filePath": env.fs.resolve(file_path)}
        except OSError as exc:
            raise self.fail(step, f"{operation} failed: {exc}") from exc

        raise self.fail(step, f"Unknown file operation '{operation}'")


__all__ = ["FileHandler"]
