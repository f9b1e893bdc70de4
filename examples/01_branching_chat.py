"""
Example 01: Branching Chat
==========================

Demonstrates the core ChatClient flow:
- Sending on the main line
- Opening a reply branch off an assistant answer
- Opting branch messages into the main context
- Cascading exclusion of a branch subtree

Run without an API key:
    FORKCHAT_MOCK_LLM=1 python examples/01_branching_chat.py

Run with a real LLM (set your API key first):
    OPENAI_API_KEY=sk-... python examples/01_branching_chat.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def show(label: str, turns) -> None:
    print(f"--- {label} ({len(turns)} turns) ---")
    for t in turns:
        print(f"  [{t.segment:>6}] {t.role:>9}: {t.text()[:60]!r}")
    print()


async def main() -> None:
    from forkchat import ChatClient

    print("=== forkchat Branching Chat Example ===\n")

    async with ChatClient.open(db_path="/tmp/forkchat_example_01.db") as client:
        session = client.state.active_session()
        client.state.set_system_prompt(session.id, "You are a concise tutor.")

        answer = await client.send_main("Explain recursion in two sentences.")
        print(f"Main answer: {answer.text[:80]}\n")

        aside = await client.send_reply(answer.message_id, "Can you give a tiny example?")
        print(f"Branch answer: {aside.text[:80]}\n")

        show("Main context (branch excluded by default)", client.main_context().turns)

        await client.toggle_include(aside.user_message_id, True)
        await client.toggle_include(aside.message_id, True)
        show("Main context (branch opted in)", client.main_context().turns)

        await client.send_reply(answer.message_id, "And a base case?")
        show("Reply context", client.reply_context(answer.message_id).turns)

        changed = await client.toggle_include(aside.user_message_id, False)
        print(f"Disabling the branch root excluded {len(changed)} messages.")
        show("Main context (branch disabled)", client.main_context().turns)


if __name__ == "__main__":
    asyncio.run(main())
