"""
HTTP step handler.

One request per attempt, no handler-level retry (retries come from the
step's error policy). URL, header values and body are interpolated with the
step inputs. A non-2xx response is a step failure; the response is still
attached to the error as partial data.
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from kgflow.errors import StepError, StepErrorKind

from ..models import Step, StepType
from .base import HandlerEnv, StepHandler

logger = logging.getLogger(__name__)


def _response_data(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


class HttpHandler(StepHandler):
    type = StepType.HTTP
    error_kind = StepErrorKind.HTTP

    async def handle(self, step: Step, inputs: dict[str, Any], env: HandlerEnv) -> dict[str, Any]:
        config = step.config
        render = env.renderer.interpolate
        url = render(str(config["url"]), inputs)
        method = str(config.get("method", "GET")).upper()
        headers = {str(k): render(str(v), inputs) for k, v in config.get("headers", {}).items()}

        body = config.get("body")
        content: str | None = None
        if body is not None:
            content = render(body if isinstance(body, str) else json.dumps(body), inputs)
            if not any(k.lower() == "content-type" for k in headers) and content.lstrip()[:1] in ("{", "["):
                headers["Content-Type"] = "application/json"

        timeout = env.timeout_for(step)
        logger.debug(f"[http] {step.id}: {method} {url}")
        try:
            if env.http is not None:
                response = await env.http.request(method, url, headers=headers, content=content, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout) as client:
                    response = await client.request(method, url, headers=headers, content=content)
        except httpx.TimeoutException as exc:
            raise StepError(
                StepErrorKind.TIMEOUT, f"{method} {url} timed out after {timeout}s", step_id=step.id
            ) from exc
        except httpx.HTTPError as exc:
            raise self.fail(step, f"{method} {url} failed: {exc}") from exc

        data = {
            "url": url,
            "method": method,
            "status": response.status_code,
            "statusText": response.reason_phrase,
            "headers": dict(response.headers),
            "responseData": _response_data(response),
            "success": response.is_success,
        }
        if not response.is_success:
            raise self.fail(step, f"{method} {url} returned {response.status_code} {response.reason_phrase}", data)
        return data


__all__ = ["HttpHandler"]
