"""
LEARNIAMO TEST CLIENT - Text chat from the terminal
===================================================

PURPOSE:
Command-line client for poking a running relay without the browser widget.
It keeps the session cookie between requests exactly like a browser would, so
you can watch history build up, switch between plain and streamed replies, and
see how each error kind is reported.

USAGE:
    python client.py

    Make sure the server is running first: python run.py

COMMANDS:
    /stream  - Toggle streamed (text/event-stream) replies on/off
    /history - View the conversation stored for this session
    /clear   - Drop the session cookie (the server issues a new session)
    /quit or /exit - Exit
"""

import json
import os

import requests

try:
    from config import ASSISTANT_NAME, SESSION_COOKIE_NAME
except ImportError:
    ASSISTANT_NAME = "LEARNIAMO"
    SESSION_COOKIE_NAME = "sessionId"


# -----------------------------------------------------------------------------
# CONFIGURATION
# -----------------------------------------------------------------------------
BASE_URL = os.getenv("LEARNIAMO_URL", "http://localhost:8080")
# requests.Session stores the sessionId cookie from the first reply and sends it back.
HTTP = requests.Session()
STREAM = False


def print_header():
    print("\n" + "=" * 60)
    print(f"{ASSISTANT_NAME} - terminal chat")
    print("=" * 60)
    print("\nCommands:")
    print("  /stream  - Toggle streamed replies")
    print("  /history - See chat history")
    print("  /clear   - Start new session")
    print("  /quit    - Exit")
    print("=" * 60 + "\n")


def describe_error(response) -> str:
    """Turn an error body into one line; kind tells the user what to do next."""
    try:
        err = response.json()
    except ValueError:
        return f"Error: {response.status_code} - {response.text}"
    if "kind" in err:
        return f"[{err['kind']}] {err.get('error', '')} (next: {err.get('action')})"
    return f"Error: {response.status_code} - {err.get('detail', err)}"


# -----------------------------------------------------------------------------
# API CALLS
# -----------------------------------------------------------------------------

def send_message(message: str) -> str:
    """POST /chat and return the plain reply text."""
    try:
        response = HTTP.post(f"{BASE_URL}/chat", json={"message": message, "stream": False}, timeout=60)
    except requests.exceptions.ConnectionError:
        return "Cannot connect to backend. Start it with: python run.py"
    except requests.exceptions.Timeout:
        return "Request timed out."

    if response.status_code != 200:
        return describe_error(response)
    return response.json().get("text", "")


def stream_message(message: str) -> None:
    """POST /chat with stream=true and print fragments as they arrive."""
    try:
        response = HTTP.post(
            f"{BASE_URL}/chat",
            json={"message": message, "stream": True},
            stream=True,
            timeout=60,
        )
    except requests.exceptions.ConnectionError:
        print("Cannot connect to backend. Start it with: python run.py")
        return

    if response.status_code != 200:
        print(describe_error(response))
        return

    event = None
    for line in response.iter_lines(decode_unicode=True):
        if not line:
            event = None
            continue
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:"):
            data = json.loads(line[len("data:"):].strip())
            if event == "error":
                print(f"\n[{data['kind']}] {data['error']}")
            elif event is None:
                print(data.get("text", ""), end="", flush=True)
    print()


def get_chat_history() -> str:
    try:
        response = HTTP.get(f"{BASE_URL}/chat/history", timeout=10)
    except requests.exceptions.RequestException as e:
        return f"Error retrieving history: {e}"
    if response.status_code != 200:
        return describe_error(response)

    messages = response.json().get("messages", [])
    if not messages:
        return "No messages in this session"

    output = f"\nChat History ({len(messages)} messages):\n" + "-" * 60 + "\n"
    for i, msg in enumerate(messages, 1):
        role = "You" if msg.get("role") == "user" else ASSISTANT_NAME
        output += f"{i}. {role}: {msg.get('text', '')}\n"
    return output + "-" * 60 + "\n"


# -----------------------------------------------------------------------------
# MAIN LOOP
# -----------------------------------------------------------------------------

def main():
    global STREAM
    print_header()

    while True:
        try:
            user_input = input("\nYou: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input in ("/quit", "/exit"):
            print("\nGoodbye!")
            break
        if user_input == "/stream":
            STREAM = not STREAM
            print(f"Streaming {'on' if STREAM else 'off'}")
            continue
        if user_input == "/history":
            print(get_chat_history())
            continue
        if user_input == "/clear":
            HTTP.cookies.pop(SESSION_COOKIE_NAME, None)
            print("Session cleared. Starting fresh!")
            continue
        if user_input.startswith("/"):
            print(f"Unknown command: {user_input}")
            continue

        print(f"{ASSISTANT_NAME}: ", end="", flush=True)
        if STREAM:
            stream_message(user_input)
        else:
            print(send_message(user_input))


if __name__ == "__main__":
    main()
