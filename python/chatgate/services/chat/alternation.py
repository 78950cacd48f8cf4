"""Role alternation fixing.

Most chat-completion backends reject conversations that do not strictly alternate.
fix_roles enforces:

1. The last turn is a user turn (a continuation turn is appended otherwise)
2. Non-system turns strictly alternate user/assistant
3. The first non-system turn is a user turn
4. System messages stay first and are exempt from alternation and budgets;
   several system messages are merged into one

Runs of same-role turns collapse to the most recent turn of the run. The function
never fails: it only drops or inserts turns.
"""

from collections.abc import Sequence

from chatgate.services.llm.types import Message

# Text of the synthetic user turn appended when the caller's last turn was not from the user
CONTINUE_PROMPT = "继续"


def fix_roles(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Return a conversation satisfying the alternation invariants."""
    msgs = list(messages)
    if not msgs or msgs[-1].role != "user":
        msgs.append(Message(role="user", content=CONTINUE_PROMPT))

    system = [m for m in msgs if m.role == "system"]
    if len(system) > 1:
        system = [Message(role="system", content="\n".join(m.content for m in system))]
    turns = [m for m in msgs if m.role != "system"]

    kept: list[Message] = []
    last_role = None
    for message in reversed(turns):
        if message.role == last_role:
            continue
        last_role = message.role
        kept.append(message)

    # kept starts at the final user turn; an even count would begin on assistant
    if len(kept) % 2 == 0:
        kept.pop()

    kept.reverse()
    return tuple(system + kept)

