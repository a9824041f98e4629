"""Terminal client for a running surfer server.

Demonstrates:
- Getting a live desktop from the server and watching it in a browser
- Streaming a conversation with ChatSession
- Watching tool invocations resolve as frames arrive
- Persisting the conversation (Supabase when configured, else in memory)

Usage:
    Start the server with GEMINI_API_KEY and E2B_API_KEY set:
        surfer-server
    Then, in another terminal:
        uv run examples/desktop_chat.py [sandbox-id]
"""

import asyncio
import os
import signal
import sys

from surfer.chat import ChatSession
from surfer.config import Settings, configure_logging
from surfer.persistence import store_from_settings

API_URL = os.environ.get("SURF_API_URL", "http://localhost:8000/api/chat")


def print_invocations(message):
    for invocation in message.tool_invocations():
        print(
            f"  [{invocation.state.value}] {invocation.tool_name}"
            f"({invocation.args}) -> {invocation.result}"
        )


async def main():
    configure_logging("WARNING", log_file=None)
    # Ctrl-C at the prompt exits instead of cancelling main().
    signal.signal(signal.SIGINT, signal.default_int_handler)
    loop = asyncio.get_running_loop()
    sandbox_id = sys.argv[1] if len(sys.argv) > 1 else None
    store = store_from_settings(Settings.from_env())

    async with ChatSession(API_URL, sandbox_id=sandbox_id, store=store) as session:
        stream_url = await session.open_desktop()
        print(f"Desktop {session.sandbox_id}: {stream_url}")
        print("Surf desktop agent. Ctrl-C stops a response, Ctrl-D exits.\n")
        while True:
            try:
                user_input = input("You: ")
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                break

            request = asyncio.create_task(session.append(user_input))
            loop.add_signal_handler(signal.SIGINT, session.stop)
            try:
                message = await request
            finally:
                loop.remove_signal_handler(signal.SIGINT)

            if session.status == "error":
                print(f"Error: {session.error}\n")
                continue
            if message is not None:
                print(f"Surf: {message.text()}")
                print_invocations(message)
                print()


if __name__ == "__main__":
    asyncio.run(main())
