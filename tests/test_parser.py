"""
Tests for reading workflows out of the graph.
"""

import pytest

from kgflow.errors import ValidationError, WorkflowNotFoundError
from kgflow.store import UriResolver
from kgflow.workflow import Step, StepType, WorkflowParser
from kgflow.workflow.parser import required_config

from .support import load

REPORT_WORKFLOW = """
ex:report a hk:Hook ;
    dct:title "Commit report" ;
    hk:orderedPipelines ( ex:collect ex:publish ) ;
    wf:lock "reports" .

ex:collect a op:Pipeline ; op:steps ( ex:commits ) .
ex:publish a op:Pipeline ; op:steps ( ex:render ex:save ) .

ex:commits a wf:SparqlStep ;
    wf:text "SELECT ?c WHERE { ?c a git:Commit }" ;
    wf:outputMapping "{\\"commits\\": \\"results\\"}" ;
    wf:timeout 2500 .

ex:render a wf:TemplateStep ;
    wf:text "{{ commits | length }} commits" ;
    wf:inputMapping "{\\"commits\\": \\"commits\\"}" ;
    wf:dependsOn ( ex:commits ) ;
    wf:retryCount 2 ;
    wf:retryDelay 100 ;
    wf:retryBackoff "exponential" ;
    wf:continueOnError true .

ex:save a wf:FileStep ;
    wf:operation "WRITE" ;
    wf:filePath "out/report.txt" ;
    wf:content "{{ render.content }}" ;
    wf:dependsOn ex:render .
"""


def single_step_workflow(step_ttl, step_id="s"):
    return f"""
    ex:wf a hk:Hook ; hk:orderedPipelines ( ex:p ) .
    ex:p a op:Pipeline ; op:steps ( ex:{step_id} ) .
    {step_ttl}
    """


@pytest.fixture
def parser():
    return WorkflowParser()


@pytest.fixture
def report_store(commit_store):
    return load(REPORT_WORKFLOW, commit_store)


# =============================================================================
# Parsing
# =============================================================================


class TestParse:
    def test_workflow_header(self, parser, report_store):
        workflow = parser.parse(report_store, "report")
        assert workflow.id == "report"
        assert workflow.title == "Commit report"
        assert workflow.lock == "reports"
        assert [p.id for p in workflow.pipelines] == ["collect", "publish"]
        assert workflow.pipelines[1].step_ids == ["render", "save"]

    def test_steps_flattened_in_pipeline_order(self, parser, report_store):
        workflow = parser.parse(report_store, "report")
        assert [s.id for s in workflow.steps] == ["commits", "render", "save"]
        assert [s.pipeline for s in workflow.steps] == ["collect", "publish", "publish"]

    def test_sparql_step(self, parser, report_store):
        step = parser.parse(report_store, "report").step("commits")
        assert step.type == StepType.SPARQL
        assert step.config["query"] == "SELECT ?c WHERE { ?c a git:Commit }"
        assert step.output_mapping == {"commits": "results"}
        assert step.timeout_s == 2.5

    def test_template_step_and_error_policy(self, parser, report_store):
        step = parser.parse(report_store, "report").step("render")
        assert step.config["template"] == "{{ commits | length }} commits"
        assert step.input_mapping == {"commits": "commits"}
        assert step.depends_on == ["commits"]
        policy = step.error_policy
        assert (policy.retry_count, policy.retry_delay_ms, policy.backoff) == (2, 100, "exponential")
        assert policy.continue_on_error is True
        assert policy.wraps

    def test_single_dependency_without_list(self, parser, report_store):
        step = parser.parse(report_store, "report").step("save")
        assert step.depends_on == ["render"]
        assert step.config["operation"] == "write"

    def test_lookup_by_full_iri(self, parser, report_store):
        assert parser.parse(report_store, "http://example.org/report").id == "report"

    def test_not_found(self, parser, report_store):
        with pytest.raises(WorkflowNotFoundError):
            parser.parse(report_store, "missing")

    def test_deprecated_query_predicate_warns(self, parser, store):
        load(single_step_workflow('ex:s a wf:SparqlStep ; wf:query "ASK {}" .'), store)
        workflow = parser.parse(store, "wf")
        assert workflow.steps[0].config["query"] == "ASK {}"
        assert any("deprecated" in w for w in workflow.warnings)

    def test_query_from_path(self, tmp_path, store):
        (tmp_path / "count.rq").write_text("SELECT (COUNT(?s) AS ?n) WHERE { ?s ?p ?o }")
        parser = WorkflowParser(UriResolver({"graph://": tmp_path}))
        load(single_step_workflow('ex:s a wf:SparqlStep ; wf:path "graph://count.rq" .'), store)
        step = parser.parse(store, "wf").steps[0]
        assert step.config["query"].startswith("SELECT (COUNT")
        assert step.config["queryPath"] == "graph://count.rq"

    def test_headers_are_json(self, parser, store):
        load(
            single_step_workflow(
                'ex:s a wf:HttpStep ; wf:url "https://api.test/x" ; wf:method "post" ; '
                'wf:headers "{\\"X-Key\\": \\"1\\"}" .'
            ),
            store,
        )
        step = parser.parse(store, "wf").steps[0]
        assert step.config["method"] == "POST"
        assert step.config["headers"] == {"X-Key": "1"}


# =============================================================================
# Validation
# =============================================================================


class TestValidation:
    def test_valid_report(self, parser, report_store):
        report = parser.validate(report_store, "report")
        assert report.valid
        assert report.errors == []

    def test_missing_config(self, parser, store):
        load(single_step_workflow("ex:s a wf:HttpStep ; wf:method \"GET\" ."), store)
        report = parser.validate(store, "wf")
        assert not report.valid
        assert report.error_kinds() == ["ConfigError"]
        assert report.errors[0]["missing"] == ["url"]

    def test_unknown_step_type(self, parser, store):
        load(single_step_workflow("ex:s a ex:MysteryStep ."), store)
        assert parser.validate(store, "wf").error_kinds() == ["UnknownStepTypeError"]

    def test_unknown_dependency(self, parser, store):
        load(single_step_workflow('ex:s a wf:CliStep ; wf:command "true" ; wf:dependsOn ex:ghost .'), store)
        assert parser.validate(store, "wf").error_kinds() == ["UnknownDependencyError"]

    def test_duplicate_step(self, parser, store):
        load(
            """
            ex:wf a hk:Hook ; hk:orderedPipelines ( ex:p1 ex:p2 ) .
            ex:p1 a op:Pipeline ; op:steps ( ex:s ) .
            ex:p2 a op:Pipeline ; op:steps ( ex:s ) .
            ex:s a wf:CliStep ; wf:command "true" .
            """,
            store,
        )
        assert parser.validate(store, "wf").error_kinds() == ["DuplicateStepError"]

    def test_cycle(self, parser, store):
        load(
            """
            ex:wf a hk:Hook ; hk:orderedPipelines ( ex:p ) .
            ex:p a op:Pipeline ; op:steps ( ex:a ex:b ) .
            ex:a a wf:CliStep ; wf:command "true" ; wf:dependsOn ex:b .
            ex:b a wf:CliStep ; wf:command "true" ; wf:dependsOn ex:a .
            """,
            store,
        )
        report = parser.validate(store, "wf")
        assert report.error_kinds() == ["CycleError"]

    def test_unknown_file_operation(self, parser, store):
        load(single_step_workflow('ex:s a wf:FileStep ; wf:operation "chmod" ; wf:filePath "x" .'), store)
        report = parser.validate(store, "wf")
        assert not report.valid
        assert "unknown file operation" in report.errors[0]["message"]

    def test_xlsx_is_rejected(self, parser, store):
        load(
            single_step_workflow(
                'ex:s a wf:OutputStep ; wf:text "# Title" ; wf:outputPath "out.xlsx" ; wf:format "xlsx" .'
            ),
            store,
        )
        report = parser.validate(store, "wf")
        assert "not supported" in report.errors[0]["message"]

    def test_non_positive_timeout(self, parser, store):
        load(single_step_workflow('ex:s a wf:CliStep ; wf:command "true" ; wf:timeout 0 .'), store)
        assert not parser.validate(store, "wf").valid

    def test_bad_backoff(self, parser, store):
        load(single_step_workflow('ex:s a wf:CliStep ; wf:command "true" ; wf:retryBackoff "random" .'), store)
        report = parser.validate(store, "wf")
        assert "retryBackoff" in report.errors[0]["message"]

    def test_non_integer_retry_count_is_reported(self, parser, store):
        load(single_step_workflow('ex:s a wf:CliStep ; wf:command "true" ; wf:retryCount "twice" .'), store)
        report = parser.validate(store, "wf")
        assert report.error_kinds() == ["ValidationError"]
        assert "retryCount must be an integer" in report.errors[0]["message"]

    def test_fractional_retry_delay_is_reported(self, parser, store):
        load(single_step_workflow('ex:s a wf:CliStep ; wf:command "true" ; wf:retryDelay 2.5 .'), store)
        report = parser.validate(store, "wf")
        assert "retryDelay must be an integer" in report.errors[0]["message"]

    def test_parse_aggregates_every_error(self, parser, store):
        load(
            """
            ex:wf a hk:Hook ; hk:orderedPipelines ( ex:p ) .
            ex:p a op:Pipeline ; op:steps ( ex:a ex:b ) .
            ex:a a wf:HttpStep .
            ex:b a ex:Unknown .
            """,
            store,
        )
        with pytest.raises(ValidationError) as exc_info:
            parser.parse(store, "wf")
        assert {type(e).__name__ for e in exc_info.value.errors} == {"ConfigError", "UnknownStepTypeError"}
        assert exc_info.value.step_ids == ["a", "b"]


class TestRequiredConfig:
    def test_copy_needs_source_and_target(self):
        step = Step(id="c", type=StepType.FILE, config={"operation": "copy"})
        assert required_config(step) == ["sourcePath", "targetPath"]

    def test_output_needs_template_and_path(self):
        step = Step(id="o", type=StepType.OUTPUT)
        assert required_config(step) == ["template|templatePath", "outputPath"]


# =============================================================================
# Listing
# =============================================================================


class TestList:
    def test_summaries(self, parser, report_store):
        summaries = parser.list(report_store)
        assert [s.to_dict() for s in summaries] == [
            {
                "id": "report",
                "iri": "http://example.org/report",
                "title": "Commit report",
                "pipelineCount": 2,
                "stepCount": 3,
            }
        ]

    def test_empty_store(self, parser, store):
        assert parser.list(store) == []
