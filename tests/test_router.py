import pytest

from catalog_agent.agent import ROUTE_ORDER
from catalog_agent.errors import ExternalError
from catalog_agent.response_builder import chat
from catalog_agent.router import FlowRouter, RouteStep, TurnContext


def _context():
    return TurnContext(tenant="t1", raw="hola", normalized="hola", state={})


def test_first_answer_wins_and_trace_records_declines():
    calls = []

    def decline(context):
        calls.append("decline")
        return None

    def answer(context):
        calls.append("answer")
        return chat("ok")

    def never(context):
        calls.append("never")
        return chat("too late")

    router = FlowRouter([RouteStep("a", decline), RouteStep("b", answer), RouteStep("c", never)])
    context = _context()
    response = router.route(context)
    assert response.message == "ok"
    assert response.meta["route"] == "b"
    assert calls == ["decline", "answer"]
    assert [entry["status"] for entry in context.trace] == ["declined", "success"]


def test_external_error_is_a_decline():
    def broken(context):
        raise ExternalError("llm", "timeout")

    router = FlowRouter([RouteStep("model", broken), RouteStep("fallback", lambda context: chat("canned"))])
    context = _context()
    assert router.route(context).message == "canned"
    assert context.trace[0]["status"] == "error"


def test_other_exceptions_propagate():
    def buggy(context):
        raise KeyError("boom")

    with pytest.raises(KeyError):
        FlowRouter([RouteStep("buggy", buggy)]).route(_context())


def test_skip_if_and_empty_chain():
    router = FlowRouter([RouteStep("skipped", lambda context: chat("no"), skip_if=lambda context: True)])
    context = _context()
    response = router.route(context)
    assert response.meta["route"] == "none"
    assert context.trace[0]["status"] == "skipped"


def test_duplicate_step_names_are_rejected():
    with pytest.raises(ValueError):
        FlowRouter([RouteStep("a", lambda c: None), RouteStep("a", lambda c: None)])


def test_agent_route_order_is_declared(agent):
    assert agent.route_names == list(ROUTE_ORDER)
    assert ROUTE_ORDER.index("query") < ROUTE_ORDER.index("pending_guard") < ROUTE_ORDER.index("targeted_update")
    assert ROUTE_ORDER[-1] == "model_fallback"
