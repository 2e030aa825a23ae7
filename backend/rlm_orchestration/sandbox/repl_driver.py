"""Code runner executed by the subprocess and Docker environments.

This file runs as a standalone script in a fresh interpreter (possibly inside
a container without this package installed), so it only uses the standard
library. It reads one JSON payload ``{"code": ..., "variables": {...}}`` from
the file named on the command line, or from the first line of stdin, runs
the code, and prints a single state line when done.

Requests for nested queries are printed on stdout as sentinel lines. In
interactive mode the answer is read back from stdin as one JSON line; in
deferred mode (``RLM_DRIVER_MODE=deferred``) a placeholder is returned and
the host splices the real answers in afterwards.
"""

import ast
import io
import json
import os
import re
import sys
import traceback

STATE_MARKER = "__RLM_STATE__ "
QUERY_SENTINEL = "LLM_QUERY_CALL: "
BATCHED_QUERY_SENTINEL = "LLM_QUERY_BATCHED_CALL: "
CONTEXT_VARIABLE = "context_0"
FILENAME = "<rlm>"
HELPERS = ("llm_query", "llm_query_batched", "peek", "grep")


def placeholder(index):
    return "<pending llm_query #%d>" % index


def split_trailing_expression(source):
    try:
        tree = ast.parse(source)
    except SyntaxError:
        return source, None
    if not tree.body or not isinstance(tree.body[-1], ast.Expr):
        return source, None
    last = tree.body[-1]
    expression = ast.get_source_segment(source, last)
    if expression is None:
        return source, None
    lines = source.splitlines(keepends=True)
    head = lines[last.lineno - 1].encode("utf-8")[: last.col_offset].decode("utf-8")
    return "".join(lines[: last.lineno - 1]) + head, expression


def is_json_value(value):
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


class Bridge:
    """Carries nested-query requests between the running code and the host."""

    def __init__(self, protocol, replies, captured, deferred):
        self.protocol = protocol
        self.replies = replies
        self.captured = captured
        self.deferred = deferred
        self.count = 0

    def _request(self, sentinel, payload):
        line = sentinel + json.dumps(payload)
        text = self.captured.getvalue()
        if text and not text.endswith("\n"):
            self.captured.write("\n")
        self.captured.write(line + "\n")
        self.protocol.write(line + "\n")
        self.protocol.flush()
        self.count += 1

    def query(self, prompt):
        self._request(QUERY_SENTINEL, str(prompt))
        if self.deferred:
            return placeholder(self.count)
        return json.loads(self.replies.readline())

    def query_batched(self, prompts):
        prompts = [str(p) for p in prompts]
        self._request(BATCHED_QUERY_SENTINEL, prompts)
        if self.deferred:
            return [placeholder(self.count)] * len(prompts)
        return json.loads(self.replies.readline())


def error_line(exc):
    if isinstance(exc, SyntaxError):
        return exc.lineno
    frames = [f for f in traceback.extract_tb(exc.__traceback__) if f.filename == FILENAME]
    return frames[-1].lineno if frames else None


def load_payload(argv, stdin):
    if len(argv) > 1:
        with open(argv[1], "r", encoding="utf-8") as handle:
            return json.load(handle)
    return json.loads(stdin.readline())


def run(payload, bridge):
    namespace = {"__name__": "__rlm__"}
    namespace.update(payload.get("variables") or {})

    def peek(start=0, end=None):
        return str(namespace.get(CONTEXT_VARIABLE, ""))[start:end]

    def grep(pattern):
        regex = re.compile(pattern)
        text = str(namespace.get(CONTEXT_VARIABLE, ""))
        return [line for line in text.splitlines() if regex.search(line)]

    namespace.update(
        llm_query=bridge.query,
        llm_query_batched=bridge.query_batched,
        peek=peek,
        grep=grep,
    )

    state = {"success": True, "return_value": None, "error": None}
    body, expression = split_trailing_expression(payload["code"])
    try:
        exec(compile(body, FILENAME, "exec"), namespace)
        if expression is not None:
            value = eval(compile(expression, FILENAME, "eval"), namespace)
            state["return_value"] = value if is_json_value(value) else repr(value)
    except (Exception, SystemExit) as exc:
        formatted = traceback.format_exc()
        sys.stderr.write(formatted)
        state["success"] = False
        state["error"] = {
            "kind": type(exc).__name__,
            "message": str(exc),
            "line": error_line(exc),
            "traceback": formatted,
        }

    state["variables"] = {
        name: value
        for name, value in namespace.items()
        if not name.startswith("_") and name not in HELPERS and is_json_value(value)
    }
    return state


def main():
    protocol = sys.stdout
    replies = sys.stdin
    payload = load_payload(sys.argv, replies)

    captured_out = io.StringIO()
    captured_err = io.StringIO()
    bridge = Bridge(
        protocol,
        replies,
        captured_out,
        deferred=os.environ.get("RLM_DRIVER_MODE") == "deferred",
    )

    sys.stdout, sys.stderr = captured_out, captured_err
    try:
        state = run(payload, bridge)
    finally:
        sys.stdout, sys.stderr = sys.__stdout__, sys.__stderr__

    state["stdout"] = captured_out.getvalue()
    state["stderr"] = captured_err.getvalue()
    state["queries"] = bridge.count
    protocol.write(STATE_MARKER + json.dumps(state) + "\n")
    protocol.flush()


if __name__ == "__main__":
    main()
