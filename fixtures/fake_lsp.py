"""
Minimal language server used by the test suite.

Speaks JSON-RPC 2.0 with Content-Length framing on stdio and answers the
handful of requests the language session issues with canned results.
"""

import json
import sys

stdin = sys.stdin.buffer
stdout = sys.stdout.buffer


def send(message):
    body = json.dumps(message).encode("utf-8")
    stdout.write(f"Content-Length: {len(body)}\r\n\r\n".encode("ascii") + body)
    stdout.flush()


def read_message():
    length = None
    while True:
        line = stdin.readline()
        if not line:
            return None
        line = line.strip()
        if not line:
            break
        name, _, value = line.decode("ascii").partition(":")
        if name.strip().lower() == "content-length":
            length = int(value.strip())
    if length is None:
        return None
    return json.loads(stdin.read(length).decode("utf-8"))


def location(uri, line, character):
    return {
        "uri": uri,
        "range": {
            "start": {"line": line, "character": character},
            "end": {"line": line, "character": character + 5},
        },
    }


def handle(method, params):
    uri = (params or {}).get("textDocument", {}).get("uri", "")
    position = (params or {}).get("position", {})
    if method == "initialize":
        return {"capabilities": {
            "definitionProvider": True,
            "referencesProvider": True,
            "documentSymbolProvider": True,
            "hoverProvider": True,
        }}
    if method == "textDocument/definition":
        if position.get("line") == 99:
            raise ValueError("position out of range")
        return [location(uri, 0, 4)]
    if method == "textDocument/references":
        return [location(uri, 0, 4), location(uri, 1, 11)]
    if method == "textDocument/documentSymbol":
        return [{
            "name": "login",
            "kind": 12,
            "range": {"start": {"line": 0, "character": 0}, "end": {"line": 1, "character": 0}},
            "selectionRange": {"start": {"line": 0, "character": 4}, "end": {"line": 0, "character": 9}},
            "children": [],
        }]
    if method == "textDocument/hover":
        return {"contents": {"kind": "markdown", "value": "def login(user, password)"}}
    return None


def main():
    while True:
        message = read_message()
        if message is None:
            return
        method = message.get("method")
        if method is None:
            # Response to a server-initiated request
            continue
        if method == "exit":
            return
        if "id" not in message:
            continue
        if method == "initialize":
            # Exercise server-to-client requests before answering
            send({"jsonrpc": "2.0", "id": "srv-1", "method": "window/workDoneProgress/create",
                  "params": {"token": "index"}})
        try:
            send({"jsonrpc": "2.0", "id": message["id"], "result": handle(method, message.get("params"))})
        except ValueError as e:
            send({"jsonrpc": "2.0", "id": message["id"], "error": {"code": -32602, "message": str(e)}})


if __name__ == "__main__":
    main()
