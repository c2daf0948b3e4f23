"""
Example 01: Capture Session
===========================

Demonstrates the capture path end to end without a browser:
- Opening an LLMemo instance on a throwaway database
- Feeding successive renderings of a Claude chat page into a Surface
- Letting the debounced scheduler pick up only the new turns
- Reading the result back through the request router

Run:
    uv run python examples/01_capture_session.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


USER_TURN = '<div data-testid="conversation-turn"><div data-testid="human-message"><p>{}</p></div></div>'
ASSISTANT_TURN = '<div data-testid="conversation-turn"><div><p>{}</p></div></div>'


def render(*turns: tuple[str, str]) -> str:
    body = "".join(
        (USER_TURN if role == "user" else ASSISTANT_TURN).format(text) for role, text in turns
    )
    return f"<html><head><title>Demo - Claude</title></head><body><main>{body}</main></body></html>"


async def main() -> None:
    from llmemo import CaptureConfig, Llmemo, LlmemoConfig, StoreConfig, Surface

    print("=== LLMemo Capture Example ===\n")

    config = LlmemoConfig(
        store=StoreConfig(db_path="/tmp/llmemo_example_01.db"),
        capture=CaptureConfig(debounce_delay=0.1, initial_delay=0.1),
    )

    conversation = [
        ("user", "What is Python's GIL?"),
        ("assistant", "A lock that lets one thread run Python bytecode at a time."),
        ("user", "Does asyncio avoid it?"),
        ("assistant", "asyncio runs on one thread, so the GIL rarely matters for it."),
    ]

    async with Llmemo.open(config=config) as memo:
        surface = Surface("https://claude.ai/chat/0f3c9a2e-demo")
        async with memo.open_context(surface) as context:
            for i in range(1, len(conversation) + 1):
                # The page grows by one turn at a time, the way a chat UI renders.
                surface.render(render(*conversation[:i]))
                await asyncio.sleep(0.3)
            await context.pipeline.drain()

        sessions = (await memo.router.handle({"type": "GET_SESSIONS"}))["sessions"]
        session = sessions[0]
        print(f"Session {session['id']} ({session['sessionKey']})")
        print(f"Messages stored: {session['messageCount']}\n")

        messages = await memo.router.handle(
            {"type": "GET_SESSION_MESSAGES", "sessionId": session["id"]}
        )
        for message in messages["messages"]:
            print(f"  {message['role']:<9} {message['content']}")

        hits = await memo.router.handle({"type": "SEARCH", "query": "asyncio"})
        print(f"\nSearch 'asyncio': {len(hits['results'])} match(es)")

        await memo.router.handle({"type": "WIPE_ALL"})


if __name__ == "__main__":
    asyncio.run(main())
