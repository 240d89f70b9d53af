import json

import pytest

from blockpilot.database import Database
from blockpilot.errors import ProtocolError
from blockpilot.validation import (
    ComponentContract,
    ContractClause,
    ValidationLedger,
    ValidationRun,
    ValidationService,
    ValidationState,
    Verdict,
)

from agents import BrokenAgent, ChainAgent, ClumsyAgent
from conftest import FakeRuntime

CONTRACT = ComponentContract(
    name="handover",
    version="2",
    summary="A flag script announces itself and passes control through a broadcast.",
    clauses=(
        ContractClause("C1", "The flag script speaks before broadcasting."),
        ContractClause("C2", "Receivers of the broadcast switch costume."),
    ),
    authoring_exemplars=frozenset({"p1"}),
)


class Factory:
    def __init__(self, **flags):
        self.flags = flags
        self.created = []

    def __call__(self):
        runtime = FakeRuntime()
        for key, value in self.flags.items():
            setattr(runtime, key, value)
        self.created.append(runtime)
        return runtime


@pytest.fixture()
def ledger(tmp_path):
    database = Database(f"sqlite:///{tmp_path / 'ledger.db'}")
    database.create_all()
    return ValidationLedger(database)


def test_fresh_exemplar_round_trips_and_passes(tmp_path):
    factory = Factory()
    agent = ChainAgent()
    run = ValidationRun(CONTRACT, agent, factory, tmp_path / "run")
    report = run.execute()

    assert report.verdict is Verdict.PASS
    assert report.exemplar_id == "p2"
    assert report.build_observation == report.reload_observation
    assert report.build_observation["Sprite1"]["trace"][:2] == ["event_whenflagclicked", "looks_say MESSAGE=p2"]
    assert run.history == (
        ValidationState.SPAWNED,
        ValidationState.BUILDING,
        ValidationState.PERSISTING,
        ValidationState.RELOADING,
        ValidationState.REPORTING,
        ValidationState.DONE,
    )
    assert len(factory.created) == 2
    assert all(runtime.closed for runtime in factory.created)
    assert "import_project" in factory.created[1].calls

    artifacts = report.artifacts
    for path in (artifacts.build_screenshot, artifacts.reload_screenshot, artifacts.program, artifacts.verdict):
        assert path.exists()
    verdict = json.loads(artifacts.verdict.read_text(encoding="utf-8"))
    assert verdict["verdict"] == "pass" and verdict["round_trip_identical"] is True


def test_agent_sees_only_the_published_contract(tmp_path):
    agent = ChainAgent()
    ValidationRun(CONTRACT, agent, Factory(), tmp_path / "run").execute()
    assert "authoring_exemplars" not in agent.seen_contract
    assert agent.seen_contract["clauses"][0] == {"id": "C1", "text": "The flag script speaks before broadcasting."}
    with pytest.raises(TypeError):
        agent.seen_contract["name"] = "changed"
    assert agent.seen_excluded == frozenset({"p1"})


def test_reusing_authoring_exemplar_fails(tmp_path):
    factory = Factory()
    run = ValidationRun(CONTRACT, ChainAgent(force="p1"), factory, tmp_path / "run")
    report = run.execute()
    assert report.verdict is Verdict.FAIL
    assert "already used" in report.failures[0]
    assert ValidationState.PERSISTING not in run.history
    assert len(factory.created) == 1


def test_gaps_make_a_partial_verdict(tmp_path):
    agent = ChainAgent(gaps=[("C2", "does not say which sprites receive the broadcast")])
    report = ValidationRun(CONTRACT, agent, Factory(), tmp_path / "run").execute()
    assert report.verdict is Verdict.PARTIAL
    assert report.to_dict()["gaps"] == [
        {"clause_id": "C2", "problem": "does not say which sprites receive the broadcast"}
    ]


def test_behaviour_change_after_reload_fails(tmp_path):
    class LossyExport(FakeRuntime):
        def export_project(self):
            graph = self.graph("Sprite1")
            self.drop_on_reload = [n for n, node in graph.items() if node.opcode == "looks_nextcostume"]
            return super().export_project()

    report = ValidationRun(CONTRACT, ChainAgent(), LossyExport, tmp_path / "run").execute()
    assert report.verdict is Verdict.FAIL
    assert "behaves differently" in report.failures[0]
    assert report.build_observation != report.reload_observation


def test_failed_build_reports_instead_of_raising(tmp_path):
    report = ValidationRun(CONTRACT, BrokenAgent(), Factory(), tmp_path / "run").execute()
    assert report.verdict is Verdict.FAIL
    assert report.failures[0].startswith("build failed: invariant_violation")
    assert report.exemplar_id is None


def test_reload_failure_is_reported(tmp_path):
    factory = Factory(fail_imports=1)
    run = ValidationRun(CONTRACT, ChainAgent(), factory, tmp_path / "run")
    report = run.execute()
    assert report.verdict is Verdict.FAIL
    assert report.failures[0].startswith("reload failed")
    assert run.history[-3:] == (ValidationState.RELOADING, ValidationState.REPORTING, ValidationState.DONE)


def test_run_executes_once(tmp_path):
    run = ValidationRun(CONTRACT, ChainAgent(), Factory(), tmp_path / "run")
    run.execute()
    with pytest.raises(ProtocolError):
        run.execute()


def test_illegal_transition(tmp_path):
    run = ValidationRun(CONTRACT, ChainAgent(), Factory(), tmp_path / "run")
    with pytest.raises(ProtocolError):
        run.advance(ValidationState.RELOADING)
    run.advance(ValidationState.BUILDING)
    with pytest.raises(ProtocolError):
        run.advance(ValidationState.DONE)


def test_stability_needs_two_passes_on_distinct_exemplars(tmp_path, ledger):
    service = ValidationService(ledger, Factory(), tmp_path / "artifacts")
    agent = ChainAgent()

    first = service.validate(CONTRACT, agent)
    assert first.exemplar_id == "p2"
    assert not ledger.is_stable("handover")

    second = service.validate(CONTRACT, agent)
    assert second.exemplar_id == "p3"
    assert agent.seen_excluded == frozenset({"p1", "p2"})
    assert ledger.is_stable("handover")

    ledger_view = ledger.stability("handover")
    assert [entry["exemplar_id"] for entry in ledger_view["recent"]] == ["p3", "p2"]


def test_partial_run_breaks_stability(tmp_path, ledger):
    service = ValidationService(ledger, Factory(), tmp_path / "artifacts")
    service.validate(CONTRACT, ChainAgent())
    service.validate(CONTRACT, ChainAgent())
    service.validate(CONTRACT, ChainAgent(gaps=[("C1", "ordering is ambiguous")]))

    assert not ledger.is_stable("handover")
    history = ledger.history("handover")
    assert [run["verdict"] for run in history] == ["partial", "pass", "pass"]
    assert history[0]["gaps"] == [{"clause_id": "C1", "problem": "ordering is ambiguous"}]
    assert ledger.components() == ["handover"]


def test_contract_from_dict():
    contract = ComponentContract.from_dict(
        {
            "name": "counter",
            "clauses": [{"id": "C1", "text": "Counts up."}],
            "authoring_exemplars": ["p1"],
        }
    )
    assert contract.version == "1"
    assert contract.clause("C1").text == "Counts up."
    with pytest.raises(KeyError):
        contract.clause("C9")
    assert "authoring_exemplars" not in contract.published()


def test_agent_crash_is_reported_and_recorded(tmp_path, ledger):
    service = ValidationService(ledger, Factory(), tmp_path / "artifacts")
    report = service.validate(CONTRACT, ClumsyAgent())

    assert report.verdict is Verdict.FAIL
    assert len(report.failures) == 1
    assert report.failures[0].startswith("build failed: ValueError:")
    assert "already has a next node" in report.failures[0]
    assert report.artifacts.verdict.exists()
    assert json.loads(report.artifacts.verdict.read_text(encoding="utf-8"))["verdict"] == "fail"
    assert [run["verdict"] for run in ledger.history("handover")] == ["fail"]


def test_agent_crash_still_finishes_the_run(tmp_path):
    run = ValidationRun(CONTRACT, ClumsyAgent(), Factory(), tmp_path / "run")
    run.execute()
    assert run.state is ValidationState.DONE
    assert run.history == (
        ValidationState.SPAWNED,
        ValidationState.BUILDING,
        ValidationState.REPORTING,
        ValidationState.DONE,
    )


def test_stability_is_judged_per_contract_version(tmp_path, ledger):
    service = ValidationService(ledger, Factory(), tmp_path / "artifacts")
    service.validate(CONTRACT, ChainAgent())
    edited = ComponentContract(
        name=CONTRACT.name,
        version="3",
        summary=CONTRACT.summary,
        clauses=CONTRACT.clauses,
        authoring_exemplars=CONTRACT.authoring_exemplars,
    )
    service.validate(edited, ChainAgent())

    assert [run["verdict"] for run in ledger.history("handover")] == ["pass", "pass"]
    assert not ledger.is_stable("handover")
    assert ledger.stability("handover")["version"] == "3"

    service.validate(edited, ChainAgent())
    assert ledger.is_stable("handover")
    assert ledger.is_stable("handover", "3")
    assert not ledger.is_stable("handover", "2")
