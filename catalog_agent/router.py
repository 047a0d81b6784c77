from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from . import nlg
from .errors import ExternalError
from .response_builder import AgentResponse, chat

logger = logging.getLogger("catalog_agent.router")


@dataclass
class TurnContext:
    """Mutable per-message context passed through every flow."""
    tenant: str
    raw: str
    normalized: str
    state: Dict[str, object]
    trace: List[Dict[str, str]] = field(default_factory=list)
    route: str = ""

    def log(self, event: str, detail: str, status: str = "success") -> None:
        """Purpose: Append a structured trace entry for the response meta.
        Inputs/Outputs: Inputs are event, detail, status; no return value.
        Side Effects / State: Mutates the trace list on the context.
        Dependencies: Used by the router and by flows.
        Failure Modes: None; always appends.
        If Removed: meta.trace loses the step-by-step decision record.
        Testing Notes: A routed message carries one "declined" entry per flow tried before the winner.
        """
        # Store a normalized entry for the envelope.
        self.trace.append(
            {
                "event": event,
                "step": event,
                "detail": detail,
                "status": status,
            }
        )


@dataclass
class RouteStep:
    """One strategy of the chain: returns a response, or None to decline."""
    name: str
    fn: Callable[[TurnContext], Optional[AgentResponse]]
    skip_if: Optional[Callable[[TurnContext], bool]] = None


class FlowRouter:
    """Ordered strategy chain; the first flow that answers wins."""

    def __init__(self, steps: List[RouteStep]) -> None:
        """Purpose: Initialize the router with an ordered list of steps.
        Inputs/Outputs: Input is a list of RouteStep; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond RouteStep definitions.
        Failure Modes: Duplicate names raise ValueError.
        If Removed: Messages are never dispatched to any flow.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        # Keep the order exactly as declared.
        names = [step.name for step in steps]
        if len(names) != len(set(names)):
            raise ValueError("duplicate route step names")
        self._steps = list(steps)

    @property
    def names(self) -> List[str]:
        return [step.name for step in self._steps]

    def route(self, context: TurnContext) -> AgentResponse:
        """Purpose: Execute steps in order until one returns a response.
        Inputs/Outputs: Input is a TurnContext; output is the winning AgentResponse.
        Side Effects / State: Flows may patch the session store; the trace is appended.
        Dependencies: RouteStep.fn and RouteStep.skip_if semantics.
        Failure Modes: ExternalError inside a flow is logged and treated as a decline; other
            exceptions propagate. With no answer at all a canned reply is returned.
        If Removed: No message produces a response.
        Testing Notes: Verify skip_if, ExternalError handling and first-wins ordering.
        """
        # Honor skip_if, swallow only collaborator failures.
        for step in self._steps:
            if step.skip_if and step.skip_if(context):
                context.log(step.name, "skipped", status="skipped")
                continue
            try:
                response = step.fn(context)
            except ExternalError as exc:
                logger.warning("tenant=%s route=%s external error: %s", context.tenant, step.name, exc)
                context.log(step.name, f"{exc.collaborator} unavailable", status="error")
                continue
            if response is None:
                context.log(step.name, "declined", status="declined")
                continue
            context.route = step.name
            context.log(step.name, f"handled mode={response.mode}")
            response.meta.setdefault("route", step.name)
            logger.info("tenant=%s route=%s mode=%s", context.tenant, step.name, response.mode)
            return response
        logger.warning("tenant=%s no flow answered", context.tenant)
        context.route = "none"
        return chat(nlg.FALLBACK, route="none")
