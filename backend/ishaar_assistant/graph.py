"""LangGraph chat pipeline — all node functions and graph builder in one module.

Collaborators are injected per request through the run config
(``config["configurable"]``):

  • ``gateway`` — a tenant-scoped ``DataGateway``
  • ``llm``     — a ``CompletionClient``
  • ``now``     — optional ``datetime`` used for overdue checks and dates

Pipeline:
    intent_router → (fetch_invoices, fetch_clients, fetch_debts, fetch_tasks)
        → completion → [action if the model answered] → END
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Coroutine

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from ishaar_assistant import intents as intent_tags
from ishaar_assistant.actions import extract_and_execute, extract_directive
from ishaar_assistant.context import ContextBundle, fetch_guarded, render_context
from ishaar_assistant.prompts import ACTIONS_DISABLED_NOTE, SYSTEM_PROMPT
from ishaar_assistant.schemas import ChatState

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────


def _configurable(config: RunnableConfig | None) -> dict[str, Any]:
    return (config or {}).get("configurable", {}) or {}


def _now(config: RunnableConfig | None) -> datetime:
    return _configurable(config).get("now") or datetime.now()


def bundle_from_state(state: ChatState) -> ContextBundle:
    """Reassemble the context bundle from the fetchers' state keys."""
    return ContextBundle(
        invoices=state.get("invoices"),
        clients=state.get("clients"),
        debts=state.get("debts"),
        tasks=state.get("tasks"),
        errors=list(state.get("context_errors", [])),
    )


# ─────────────────────────────────────────────
# 1. INTENT ROUTER
# ─────────────────────────────────────────────


async def intent_router_node(state: ChatState) -> dict:
    """Classify the message into topic intents (rule-based, no LLM)."""
    tags = intent_tags.ordered(intent_tags.classify(state["message"]))
    logger.info("intent_router | intents=%s", tags)
    return {"intents": tags}


# ─────────────────────────────────────────────
# 2. FETCHER NODES
# ─────────────────────────────────────────────


def _make_fetcher(
    category: str,
) -> Callable[[ChatState, RunnableConfig], Coroutine[Any, Any, dict]]:
    async def fetcher_node(state: ChatState, config: RunnableConfig) -> dict:
        if not intent_tags.needs_category(state.get("intents", []), category):
            return {}

        gateway = _configurable(config)["gateway"]
        section = await fetch_guarded(category, gateway, _now(config))
        if section is None:
            logger.warning("fetch_%s | failed; category omitted from context", category)
            return {"context_errors": [category]}

        logger.info("fetch_%s | rows=%d", category, len(section.rows))
        return {category: section}

    fetcher_node.__name__ = f"fetch_{category}_node"
    return fetcher_node


fetch_invoices_node = _make_fetcher(intent_tags.INVOICES)
fetch_clients_node = _make_fetcher(intent_tags.CLIENTS)
fetch_debts_node = _make_fetcher(intent_tags.DEBTS)
fetch_tasks_node = _make_fetcher(intent_tags.TASKS)


# ─────────────────────────────────────────────
# 3. COMPLETION NODE
# ─────────────────────────────────────────────


async def completion_node(state: ChatState, config: RunnableConfig) -> dict:
    """Ground the conversation in the fetched data and ask the model."""
    llm = _configurable(config)["llm"]

    context_block = render_context(bundle_from_state(state))
    system_prompt = SYSTEM_PROMPT
    if not state.get("enable_actions", True):
        system_prompt += ACTIONS_DISABLED_NOTE

    messages = llm.build_messages(
        system_prompt,
        context_block,
        state.get("history", []),
        state["message"],
        user_name=state.get("user_name"),
    )

    response = await llm.ainvoke(messages)
    meta = response.meta

    logger.info(
        "completion | model=%s | success=%s | fallback=%s | rt_ms=%s",
        meta.get("model"),
        meta.get("success"),
        meta.get("fallback_used"),
        meta.get("latency_ms"),
    )

    if not meta.get("success"):
        return {
            "reply": "",
            "model": meta.get("model", ""),
            "completion_error": meta.get("error") or "completion failed",
        }

    return {
        "reply": response.content,
        "model": meta.get("model", ""),
        "usage": meta.get("usage"),
        "completion_error": None,
    }


# ─────────────────────────────────────────────
# 4. ACTION NODE
# ─────────────────────────────────────────────


async def action_node(state: ChatState, config: RunnableConfig) -> dict:
    """Strip the directive from the reply and, if enabled, execute it."""
    reply = state.get("reply", "")

    if not state.get("enable_actions", True):
        clean, _ = extract_directive(reply)
        return {"reply": clean, "action": None}

    gateway = _configurable(config)["gateway"]
    clients = state["clients"].rows if state.get("clients") else []
    clean, result = await extract_and_execute(
        reply, gateway, clients, today=_now(config).date()
    )
    if result is not None:
        logger.info("action | type=%s | success=%s", result.type, result.success)
    return {"reply": clean, "action": result}


# ─────────────────────────────────────────────
# Graph Builder
# ─────────────────────────────────────────────

_FETCHERS = {
    "fetch_invoices": fetch_invoices_node,
    "fetch_clients": fetch_clients_node,
    "fetch_debts": fetch_debts_node,
    "fetch_tasks": fetch_tasks_node,
}


def _route_after_completion(state: ChatState) -> str:
    return END if state.get("completion_error") else "action"


def build_chat_graph():
    """Build and compile the chat graph.

    No checkpointer: every request starts from a fresh state and the
    conversation history is supplied by the caller.
    """
    g = StateGraph(ChatState)

    g.add_node("intent_router", intent_router_node)
    for name, node in _FETCHERS.items():
        g.add_node(name, node)
    g.add_node("completion", completion_node)
    g.add_node("action", action_node)

    g.add_edge(START, "intent_router")

    # Fan-out to parallel fetchers, fan-in to completion
    for name in _FETCHERS:
        g.add_edge("intent_router", name)
        g.add_edge(name, "completion")

    g.add_conditional_edges(
        "completion",
        _route_after_completion,
        {"action": "action", END: END},
    )
    g.add_edge("action", END)

    return g.compile()


def initial_state(
    message: str,
    history: list[dict[str, Any]] | None = None,
    user_name: str | None = None,
    enable_actions: bool = True,
) -> ChatState:
    return {
        "message": message,
        "history": list(history or []),
        "user_name": user_name,
        "enable_actions": enable_actions,
        "intents": [],
        "context_errors": [],
        "reply": "",
        "model": "",
    }
