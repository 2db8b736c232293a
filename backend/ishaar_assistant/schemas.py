"""Request/response schemas and LangGraph chat state."""

import operator
from typing import Annotated, Any, NotRequired, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field

from ishaar_assistant.actions import ActionResult
from ishaar_assistant.context import ClientSection, DebtSection, InvoiceSection, TaskSection

# ─────────────────────────────────────────────
# API Request
# ─────────────────────────────────────────────


class ChatRequest(BaseModel):
    """Incoming payload from the chat widget.

    ``message`` is optional at the schema level so a missing message is
    answered with the assistant's own 400 body instead of a validation error.
    """

    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = Field(None, description="The new user message")
    conversation_history: list[dict[str, Any]] = Field(
        default_factory=list,
        alias="conversationHistory",
        description="Prior turns as {role, content}",
    )
    user_id: Optional[str] = Field(None, alias="userId")
    user_name: Optional[str] = Field(None, alias="userName")
    enable_actions: bool = Field(
        True,
        alias="enableActions",
        description="Whether directives in the reply may create records",
    )


# ─────────────────────────────────────────────
# API Response
# ─────────────────────────────────────────────


class ChatResponse(BaseModel):
    response: str
    model: str
    intents: list[str] = Field(default_factory=list)
    usage: Optional[dict[str, Any]] = None
    action: Optional[ActionResult] = None


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


# ─────────────────────────────────────────────
# LangGraph State
# ─────────────────────────────────────────────


class ChatState(TypedDict):
    """State dict flowing through every node in the chat pipeline."""

    # Request
    message: str
    history: list[dict[str, Any]]
    user_name: Optional[str]
    enable_actions: bool

    # Set by intent_router
    intents: list[str]

    # Fetched context (one key per fetcher; failures are appended)
    invoices: NotRequired[Optional[InvoiceSection]]
    clients: NotRequired[Optional[ClientSection]]
    debts: NotRequired[Optional[DebtSection]]
    tasks: NotRequired[Optional[TaskSection]]
    context_errors: Annotated[list[str], operator.add]

    # Set by completion
    reply: str
    model: str
    usage: NotRequired[Optional[dict[str, Any]]]
    completion_error: NotRequired[Optional[str]]

    # Set by action
    action: NotRequired[Optional[ActionResult]]
