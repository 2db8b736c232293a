"""Standalone script to ask the assistant one question from a terminal.

Usage:
    python scripts/ask.py "ما هي إجمالي الفواتير هذا الشهر؟"
    python scripts/ask.py --user-id <uuid> --no-actions "أنشئ مهمة للعميل أحمد"

Prerequisites:
    GROQ_API_KEY, SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY set in .env
"""

import argparse
import asyncio
import json
import sys

from ishaar_assistant.config import (
    GROQ_API_KEY,
    LLM_BASE_URL,
    LLM_FALLBACK_MODEL,
    LLM_PRIMARY_MODEL,
    LLM_TIMEOUT,
)
from ishaar_assistant.gateway import DataGateway, TenantScope
from ishaar_assistant.graph import build_chat_graph, initial_state
from ishaar_assistant.llm_client import CompletionClient
from ishaar_assistant.supabase_client import get_supabase_client, resolve_tenant_id


async def ask(message: str, user_id: str | None, enable_actions: bool) -> dict:
    client = get_supabase_client()
    if client is None:
        print("SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY are not configured.")
        sys.exit(1)
    if not GROQ_API_KEY:
        print("GROQ_API_KEY is not configured.")
        sys.exit(1)

    tenant_id = resolve_tenant_id(client, user_id)
    gateway = DataGateway(client, TenantScope(tenant_id=tenant_id, user_id=user_id))
    llm = CompletionClient(
        api_key=GROQ_API_KEY,
        base_url=LLM_BASE_URL,
        primary_model=LLM_PRIMARY_MODEL,
        fallback_model=LLM_FALLBACK_MODEL,
        timeout=LLM_TIMEOUT,
    )
    graph = build_chat_graph()
    return await graph.ainvoke(
        initial_state(message, enable_actions=enable_actions),
        config={"configurable": {"gateway": gateway, "llm": llm}},
    )


def main() -> None:
    parser = argparse.ArgumentParser(description="Ask the Ishaar assistant a question.")
    parser.add_argument("message")
    parser.add_argument("--user-id", default=None)
    parser.add_argument("--no-actions", action="store_true", help="never create records")
    args = parser.parse_args()

    state = asyncio.run(ask(args.message, args.user_id, not args.no_actions))

    if state.get("completion_error"):
        print(f"❌ Assistant unavailable: {state['completion_error']}")
        sys.exit(1)

    print(f"[{state.get('model')}] intents={state.get('intents')}\n")
    print(state.get("reply", ""))
    action = state.get("action")
    if action is not None:
        mark = "✅" if action.success else "❌"
        print(f"\n{mark} {action.type}: {action.message}")
        if action.data:
            print(json.dumps(action.data, ensure_ascii=False, indent=2, default=str))


if __name__ == "__main__":
    main()
