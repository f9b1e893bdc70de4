"""
Example 02: Context Builder Without a Client
============================================

Shows how to use the pure context builders on your own message collection,
for example when you manage storage and LLM calls yourself:
- Building a main-chat context with branch supplements
- Building a reply context truncated at a chosen parent
- Watching token-budget trimming drop branch turns before main turns

No API key or database needed:
    python examples/02_context_builder.py
"""

import sys
from pathlib import Path

# Add project root to path when running directly
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def main() -> None:
    from forkchat import ContextBuilder, Message, Session

    session = Session(id="sess_demo", system_prompt="sys")
    messages = [
        Message(id="u1", session_id="sess_demo", role="user", content="What is a heap?", created_at=1),
        Message(id="a1", session_id="sess_demo", role="assistant", content="A tree-shaped priority queue.", created_at=2),
        Message(id="r1", session_id="sess_demo", role="user", content="Min or max?", parent_id="a1", anchor_message_id="a1", created_at=3),
        Message(id="r2", session_id="sess_demo", role="assistant", content="Either; Python's heapq is a min-heap.", parent_id="r1", anchor_message_id="a1", created_at=4),
        Message(id="r3", session_id="sess_demo", role="user", content="Thanks!", parent_id="r2", anchor_message_id="a1", created_at=5),
    ]

    builder = ContextBuilder()

    main_ctx = builder.build_main(session, messages)
    print("Main context:", [t.message_id or "system" for t in main_ctx.turns])

    reply_ctx = builder.build_reply(session, messages, "a1", parent_id="r2")
    print("Reply context up to r2:", [t.message_id or "system" for t in reply_ctx.turns])

    tight = builder.build_main(session, messages, max_tokens=12)
    print("Main context under 12 tokens:", [t.message_id or "system" for t in tight.turns])
    print(f"  trimmed: {tight.trimmed_message_ids}, estimate: {tight.token_estimate}")


if __name__ == "__main__":
    main()
