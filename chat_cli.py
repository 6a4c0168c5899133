"""
RELAYCHAT TERMINAL CLIENT
=========================

PURPOSE:
Command-line chat interface for the RelayChat server. It sends the whole
conversation to POST /api/chat, prints the assistant's answer as it streams
in, and keeps the finished messages for the next turn.

USAGE:
    python chat_cli.py

    Make sure the server is running first: python run.py

COMMANDS:
    /history - Show the conversation so far
    /clear   - Forget the conversation and start fresh
    /quit or /exit - Exit

Only one request is ever in flight: input is read again only after the
current answer has finished streaming.
"""

import sys
from typing import Dict, List

import requests

from app.client.stream_consumer import StreamConsumer


# -----------------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------------
# API base URL; change if your server runs on a different host or port.
BASE_URL = "http://localhost:8000"
ASSISTANT_NAME = "Assistant"


class TerminalRenderer:
    """Prints only the part of the buffer that has not been printed yet."""

    def __init__(self, out=sys.stdout):
        self.out = out
        self.printed = ""

    def __call__(self, text: str) -> None:
        if not text:
            # Buffer cleared: the answer is finished (or a new one starts).
            if self.printed:
                self.out.write("\n")
                self.out.flush()
            self.printed = ""
            return
        if text.startswith(self.printed):
            self.out.write(text[len(self.printed):])
        else:
            self.out.write("\n" + text)
        self.out.flush()
        self.printed = text


# -----------------------------------------------------------------------------
# API CALLS
# -----------------------------------------------------------------------------

def send_conversation(messages: List[Dict[str, str]], consumer: StreamConsumer) -> str:
    """POST the conversation and stream the answer; returns the full answer text ("" on error)."""
    try:
        response = requests.post(
            f"{BASE_URL}/api/chat",
            json={"messages": messages},
            stream=True,
            timeout=(10, None),  # connect timeout only; the stream itself is unbounded
        )
    except requests.exceptions.ConnectionError:
        print("❌ Cannot connect to backend. Start it with: python run.py")
        return ""
    except requests.exceptions.Timeout:
        print("❌ Request timed out.")
        return ""

    if not response.ok:
        try:
            err = response.json()
            print(f"❌ {err.get('error', response.text)}")
        except ValueError:
            print(f"❌ Error: {response.status_code} - {response.text}")
        response.close()
        return ""

    return consumer.consume(response)


def format_history(messages: List[Dict[str, str]]) -> str:
    if not messages:
        return "No messages in this conversation"
    output = f"\n📜 Chat History ({len(messages)} messages):\n"
    output += "-" * 60 + "\n"
    for i, msg in enumerate(messages, 1):
        role = "You" if msg["role"] == "user" else ASSISTANT_NAME
        output += f"{i}. {role}: {msg['content']}\n"
    output += "-" * 60 + "\n"
    return output


# -----------------------------------------------------------------------------
# MAIN LOOP
# -----------------------------------------------------------------------------

def main():
    print("\n" + "=" * 60)
    print("🤖 RelayChat - search-augmented streaming chat")
    print("  /history - See chat history")
    print("  /clear - Start a new conversation")
    print("  /quit - Exit")
    print("=" * 60 + "\n")

    messages: List[Dict[str, str]] = []
    consumer = StreamConsumer(on_update=TerminalRenderer())

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n👋 Goodbye!")
            break

        if not user_input:
            continue
        if user_input in ["/quit", "/exit"]:
            print("\n👋 Goodbye!")
            break
        if user_input == "/history":
            print(format_history(messages))
            continue
        if user_input == "/clear":
            messages = []
            print("\n🔄 Conversation cleared. Starting fresh!")
            continue
        if user_input.startswith("/"):
            print(f"❌ Unknown command: {user_input}")
            continue

        print(f"🤖 {ASSISTANT_NAME}: ", end="", flush=True)
        pending = messages + [{"role": "user", "content": user_input}]
        answer = send_conversation(pending, consumer)
        if answer.strip():
            messages = pending + [{"role": "assistant", "content": answer}]


# Run the interactive loop when this file is executed (python chat_cli.py).
if __name__ == "__main__":
    main()
