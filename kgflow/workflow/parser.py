"""
Workflow Parser.

A workflow is a hook read as a unit of work:

    ex:report a hk:Hook ;
        dct:title "Commit report" ;
        hk:orderedPipelines ( ex:main ) .

    ex:main a op:Pipeline ;
        op:steps ( ex:commits ex:render ) .

    ex:commits a wf:SparqlStep ;
        wf:text "SELECT ?c WHERE { ?c a git:Commit }" ;
        wf:outputMapping '{"items": "results"}' .

    ex:render a wf:TemplateStep ;
        wf:template "Found {{ items | length }} commits" ;
        wf:outputPath "out/report.txt" ;
        wf:dependsOn ( ex:commits ) .

Parsing walks the hook's pipelines in order, reads each pipeline's step
list, classifies every step by its type IRI, harvests its configuration and
resolves ``dependsOn`` to step ids. Structural problems are collected rather
than raised one by one: ``parse()`` raises a single ValidationError holding
all of them, ``validate()`` reports them.

Config conventions:
- ``wf:timeout``, ``wf:retryDelay`` are milliseconds
- ``wf:inputMapping`` is ``{"localName": "contextKey"}``
- ``wf:outputMapping`` is ``{"contextKey": "result.path"}``
- ``wf:headers`` and ``wf:env`` are JSON objects
"""

from __future__ import annotations

import json
import logging
from typing import Any

from rdflib import Literal
from rdflib.namespace import RDF
from rdflib.term import Node

from kgflow.errors import (
    ConfigError,
    CycleError,
    DuplicateStepError,
    ParseError,
    UnknownDependencyError,
    UnknownStepTypeError,
    ValidationError,
    WorkflowNotFoundError,
)
from kgflow.hooks.discovery import find_hook, hook_iris, read_ordered
from kgflow.store.quadstore import QuadStore
from kgflow.store.turtle import UriResolver
from kgflow.vocabulary import DCTERMS, HK, OP, RDFS, WF, local_name

from .models import (
    STEP_TYPE_IRIS,
    ErrorPolicy,
    Pipeline,
    Step,
    StepType,
    ValidationReport,
    Workflow,
    WorkflowSummary,
)
from .planner import DAGPlanner
from .retry import BACKOFFS

logger = logging.getLogger(__name__)

# Plain config keys read verbatim from wf:<key>
CONFIG_KEYS = (
    "template",
    "templatePath",
    "outputPath",
    "filePath",
    "operation",
    "content",
    "sourcePath",
    "targetPath",
    "url",
    "method",
    "body",
    "command",
    "cwd",
    "timeout",
    "format",
)

JSON_KEYS = ("headers", "env")

FILE_OPERATIONS = ("read", "write", "copy", "move", "delete")

OUTPUT_FORMATS = ("markdown", "html", "latex", "docx-html", "pptx-html", "auto")
UNSUPPORTED_FORMATS = ("xlsx",)


def _plain(value: Node) -> Any:
    if isinstance(value, Literal):
        return value.toPython()
    return str(value)


def _integer(value: Node, name: str, step_id: str) -> int:
    plain = _plain(value)
    try:
        number = int(plain)
        if not isinstance(plain, str) and number != plain:
            raise ValueError
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Step '{step_id}': {name} must be an integer, got '{value}'") from exc
    return number


def required_config(step: Step) -> list[str]:
    """Names of config keys the step's type requires but the step lacks."""
    config = step.config
    missing: list[str] = []

    def need(*keys: str) -> None:
        for key in keys:
            if config.get(key) in (None, ""):
                missing.append(key)

    if step.type == StepType.SPARQL:
        need("query")
    elif step.type == StepType.TEMPLATE:
        if not config.get("template") and not config.get("templatePath"):
            missing.append("template|templatePath")
    elif step.type == StepType.FILE:
        need("operation")
        operation = config.get("operation")
        if operation in ("read", "write", "delete"):
            need("filePath")
        elif operation in ("copy", "move"):
            need("sourcePath")
            if not config.get("targetPath") and not config.get("filePath"):
                missing.append("targetPath")
    elif step.type == StepType.HTTP:
        need("url", "method")
    elif step.type == StepType.CLI:
        need("command")
    elif step.type == StepType.OUTPUT:
        if not config.get("template") and not config.get("templatePath"):
            missing.append("template|templatePath")
        need("outputPath")
    return missing


class WorkflowParser:
    def __init__(self, resolver: UriResolver | None = None):
        self.resolver = resolver or UriResolver()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def parse(self, store: QuadStore, workflow_id: str) -> Workflow:
        """
        Read and structurally validate a workflow.

        Raises:
            WorkflowNotFoundError: No workflow with that id
            ValidationError: Holding every structural problem found
        """
        workflow, errors = self._read(store, workflow_id)
        if errors:
            raise ValidationError(
                f"Workflow '{workflow.id}' is invalid: " + "; ".join(e.message for e in errors),
                step_ids=[sid for e in errors for sid in e.step_ids],
                errors=errors,
            )
        logger.info(f"[parser] parsed {workflow.id}: {len(workflow.pipelines)} pipelines, {len(workflow.steps)} steps")
        return workflow

    def list(self, store: QuadStore) -> list[WorkflowSummary]:
        summaries = []
        for iri in hook_iris(store):
            pipelines = read_ordered(store, iri, HK.orderedPipelines)
            step_count = sum(len(read_ordered(store, p, OP.steps)) for p in pipelines)
            summaries.append(
                WorkflowSummary(
                    id=local_name(str(iri)),
                    iri=str(iri),
                    title=_title(store, iri),
                    pipeline_count=len(pipelines),
                    step_count=step_count,
                )
            )
        return summaries

    def validate(self, store: QuadStore, workflow_id: str) -> ValidationReport:
        """
        Structural and dependency validation without raising.

        Raises:
            WorkflowNotFoundError: No workflow with that id
        """
        workflow, errors = self._read(store, workflow_id)
        if not errors:
            try:
                DAGPlanner().plan(workflow.steps)
            except CycleError as exc:
                errors.append(exc)
        return ValidationReport(
            workflow_id=workflow.id,
            valid=not errors,
            errors=[e.to_dict() for e in errors],
            warnings=list(workflow.warnings),
        )

    # -------------------------------------------------------------------------
    # Reading
    # -------------------------------------------------------------------------

    def _read(self, store: QuadStore, workflow_id: str) -> tuple[Workflow, list[ValidationError]]:
        hook = find_hook(store, workflow_id)
        if hook is None:
            raise WorkflowNotFoundError(workflow_id)

        lock = store.value(hook, WF.lock)
        workflow = Workflow(
            id=local_name(str(hook)),
            iri=str(hook),
            title=_title(store, hook),
            lock=str(lock) if lock is not None else None,
        )
        errors: list[ValidationError] = []
        seen: set[str] = set()

        for pipeline_iri in read_ordered(store, hook, HK.orderedPipelines):
            pipeline = Pipeline(id=local_name(str(pipeline_iri)), iri=str(pipeline_iri))
            for step_iri in read_ordered(store, pipeline_iri, OP.steps):
                step_id = local_name(str(step_iri))
                pipeline.step_ids.append(step_id)
                if step_id in seen:
                    errors.append(DuplicateStepError(step_id))
                    continue
                seen.add(step_id)
                step = self._read_step(store, step_iri, workflow, errors)
                if step is not None:
                    step.pipeline = pipeline.id
                    workflow.steps.append(step)
            workflow.pipelines.append(pipeline)

        known = {s.id for s in workflow.steps} | seen
        for step in workflow.steps:
            for dependency in step.depends_on:
                if dependency not in known:
                    errors.append(UnknownDependencyError(step.id, dependency))
        return workflow, errors

    def _read_step(
        self,
        store: QuadStore,
        iri: Node,
        workflow: Workflow,
        errors: list[ValidationError],
    ) -> Step | None:
        step_id = local_name(str(iri))
        types = store.objects(iri, RDF.type)
        step_type = next((STEP_TYPE_IRIS[t] for t in types if t in STEP_TYPE_IRIS), None)
        if step_type is None:
            errors.append(UnknownStepTypeError(step_id, str(types[0]) if types else None))
            return None

        try:
            config = self._read_config(store, iri, step_id, step_type, workflow)
            step = Step(
                id=step_id,
                type=step_type,
                iri=str(iri),
                config=config,
                depends_on=[local_name(str(d)) for d in read_ordered(store, iri, WF.dependsOn)],
                input_mapping=self._json_object(store, iri, WF.inputMapping, step_id),
                output_mapping=self._json_object(store, iri, WF.outputMapping, step_id),
                error_policy=self._read_error_policy(store, iri, step_id),
            )
        except ParseError as exc:
            errors.append(ValidationError(exc.message, step_ids=[step_id]))
            return None

        missing = required_config(step)
        if missing:
            errors.append(ConfigError(step_id, missing))
        problems = self._check_values(step)
        errors.extend(problems)
        if "timeout" in config and not problems:
            step.timeout_s = float(config["timeout"]) / 1000
        return step

    def _read_config(
        self,
        store: QuadStore,
        iri: Node,
        step_id: str,
        step_type: StepType,
        workflow: Workflow,
    ) -> dict[str, Any]:
        config: dict[str, Any] = {}
        for key in CONFIG_KEYS:
            value = store.value(iri, WF[key])
            if value is not None:
                config[key] = _plain(value)
        for key in JSON_KEYS:
            data = self._json_object(store, iri, WF[key], step_id)
            if data:
                config[key] = data

        text = store.value(iri, WF.text)
        if text is None and store.value(iri, WF.query) is not None:
            text = store.value(iri, WF.query)
            message = f"Step '{step_id}': wf:query is deprecated, use wf:text"
            workflow.warnings.append(message)
            logger.warning(f"[parser] {message}")
        path = store.value(iri, WF.path)

        if step_type == StepType.SPARQL:
            if text is not None:
                config["query"] = str(text)
            elif path is not None:
                config["query"] = self._read_body(str(path), step_id)
                config["queryPath"] = str(path)
        elif text is not None and "template" not in config:
            # Inline body of template-like steps
            config["template"] = str(text)
        elif path is not None and "templatePath" not in config:
            config["templatePath"] = str(path)

        if "templatePath" in config and self.resolver.is_uri(str(config["templatePath"])):
            config["templatePath"] = str(self.resolver.resolve(str(config["templatePath"])))
        if "method" in config:
            config["method"] = str(config["method"]).upper()
        if "operation" in config:
            config["operation"] = str(config["operation"]).lower()
        if "format" in config:
            config["format"] = str(config["format"]).lower()
        return config

    def _read_body(self, path: str, step_id: str) -> str:
        try:
            return self.resolver.read_text(path)
        except OSError as exc:
            raise ParseError(f"Step '{step_id}': cannot read {path}: {exc}") from exc

    def _json_object(self, store: QuadStore, iri: Node, predicate: Node, step_id: str) -> dict[str, Any]:
        value = store.value(iri, predicate)
        if value is None:
            return {}
        try:
            data = json.loads(str(value))
        except json.JSONDecodeError as exc:
            raise ParseError(f"Step '{step_id}': {local_name(str(predicate))} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise ParseError(f"Step '{step_id}': {local_name(str(predicate))} must be a JSON object")
        return data

    def _read_error_policy(self, store: QuadStore, iri: Node, step_id: str) -> ErrorPolicy:
        policy = ErrorPolicy()
        retry_count = store.value(iri, WF.retryCount)
        if retry_count is not None:
            policy.retry_count = _integer(retry_count, "retryCount", step_id)
        retry_delay = store.value(iri, WF.retryDelay)
        if retry_delay is not None:
            policy.retry_delay_ms = _integer(retry_delay, "retryDelay", step_id)
        backoff = store.value(iri, WF.retryBackoff)
        if backoff is not None:
            policy.backoff = str(backoff).lower()
            if policy.backoff not in BACKOFFS:
                raise ParseError(
                    f"Step '{step_id}': unknown retryBackoff '{backoff}', expected one of {', '.join(BACKOFFS)}"
                )
        continue_on_error = store.value(iri, WF.continueOnError)
        if continue_on_error is not None:
            value = _plain(continue_on_error)
            policy.continue_on_error = value if isinstance(value, bool) else str(value).lower() == "true"
        if policy.retry_count < 0 or policy.retry_delay_ms < 0:
            raise ParseError(f"Step '{step_id}': retryCount and retryDelay must not be negative")
        return policy

    def _check_values(self, step: Step) -> list[ValidationError]:
        problems: list[ValidationError] = []
        config = step.config
        if step.type == StepType.FILE:
            operation = config.get("operation")
            if operation and operation not in FILE_OPERATIONS:
                problems.append(
                    ValidationError(
                        f"Step '{step.id}' has unknown file operation '{operation}'",
                        step_ids=[step.id],
                    )
                )
        if step.type == StepType.OUTPUT:
            fmt = config.get("format", "auto")
            if fmt in UNSUPPORTED_FORMATS:
                problems.append(
                    ValidationError(f"Step '{step.id}': output format '{fmt}' is not supported", step_ids=[step.id])
                )
            elif fmt not in OUTPUT_FORMATS:
                problems.append(
                    ValidationError(f"Step '{step.id}' has unknown output format '{fmt}'", step_ids=[step.id])
                )
        if "timeout" in config:
            try:
                if float(config["timeout"]) <= 0:
                    raise ValueError
            except (TypeError, ValueError):
                problems.append(
                    ValidationError(f"Step '{step.id}': timeout must be a positive number of ms", step_ids=[step.id])
                )
        return problems


def _title(store: QuadStore, iri: Node) -> str:
    title = store.value(iri, DCTERMS.title) or store.value(iri, RDFS.label)
    return str(title) if title is not None else ""


__all__ = ["CONFIG_KEYS", "FILE_OPERATIONS", "OUTPUT_FORMATS", "WorkflowParser", "required_config"]
