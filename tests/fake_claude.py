"""Stand-in for ``claude -p --input-format stream-json`` used by the tests.

Reads one user message per stdin line and answers in stream-json. The
prompt selects the behavior:

    stream:A|B|C   one assistant message per piece, result = "ABC"
    multi          one assistant message with two text blocks and a tool_use
    fail:MSG       result with is_error=true and result=MSG
    garbage        junk lines first, then result "survived"
    split          the result line written in three pieces
    slow:SECONDS   sleep, then answer "reply to slow:SECONDS"
    crash          exit with code 3 without answering
    hang           never answer
    stubborn       ignore SIGTERM, never answer
    argv           result = JSON list of command line arguments
    whoami         result = session_id sent with the message ("" if none)
    anything else  result = "reply to <prompt>"
"""

from __future__ import annotations

import json
import signal
import sys
import time
import uuid

SESSION_ID = f"fake-{uuid.uuid4().hex[:12]}"


def emit(obj: object) -> None:
    sys.stdout.write(json.dumps(obj) + "\n")
    sys.stdout.flush()


def emit_raw(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def assistant(*blocks: dict) -> None:
    emit({"type": "assistant", "message": {"content": list(blocks)}})


def result(text: str, is_error: bool = False) -> None:
    emit({"type": "result", "result": text, "session_id": SESSION_ID, "is_error": is_error})


def handle(prompt: str, message: dict) -> None:
    if prompt.startswith("stream:"):
        pieces = prompt[len("stream:"):].split("|")
        for piece in pieces:
            assistant({"type": "text", "text": piece})
        result("".join(pieces))
    elif prompt == "multi":
        assistant(
            {"type": "text", "text": "one "},
            {"type": "tool_use", "name": "Bash", "input": {"command": "ls"}},
            {"type": "text", "text": "two"},
        )
        result("one two")
    elif prompt.startswith("fail:"):
        result(prompt[len("fail:"):], is_error=True)
    elif prompt == "garbage":
        emit_raw("this is not json\n")
        emit_raw("\n")
        emit({"type": "mystery", "payload": 1})
        emit([1, 2, 3])
        emit({"type": "system", "subtype": "hook"})
        emit({"type": "result", "result": 42, "session_id": SESSION_ID})
        result("survived")
    elif prompt == "split":
        line = json.dumps({"type": "result", "result": "joined", "session_id": SESSION_ID, "is_error": False})
        third = len(line) // 3
        for piece in (line[:third], line[third:2 * third], line[2 * third:] + "\n"):
            emit_raw(piece)
            time.sleep(0.05)
    elif prompt.startswith("slow:"):
        time.sleep(float(prompt[len("slow:"):]))
        result(f"reply to {prompt}")
    elif prompt == "crash":
        sys.exit(3)
    elif prompt == "hang":
        while True:
            time.sleep(1)
    elif prompt == "stubborn":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        while True:
            time.sleep(1)
    elif prompt == "argv":
        result(json.dumps(sys.argv[1:]))
    elif prompt == "whoami":
        result(message.get("session_id") or "")
    else:
        result(f"reply to {prompt}")


def main() -> int:
    initialized = False
    while True:
        line = sys.stdin.readline()
        if not line:
            return 0
        if not line.strip():
            continue
        message = json.loads(line)
        prompt = message["message"]["content"][0]["text"]
        if not initialized:
            emit({"type": "system", "subtype": "init", "session_id": SESSION_ID})
            initialized = True
        handle(prompt, message)


if __name__ == "__main__":
    sys.exit(main())
