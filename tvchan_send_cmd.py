#!/usr/bin/env python3
"""
tvchan_send_cmd.py - inject a tvchan command into running tvchan sessions.

The command goes through each session's mpv IPC socket as
`print-text tvchan-cmd:<command>`, the same line a bound key produces inside
mpv. Handy for global hotkeys.

Usage:
  tvchan_send_cmd.py forward
  tvchan_send_cmd.py back
  tvchan_send_cmd.py autoskip

Sessions are found as tvchan-<pid>.sock in $TVCHAN_SOCKET_DIR (default /tmp).

Optional:
  TVCHAN_SEND_DEBUG=1 tvchan_send_cmd.py forward
    -> print which sockets are found and any errors.

  tvchan_send_cmd.py forward '/tmp/tvchan-1234.sock'
    -> only target a specific socket (or glob pattern).

Exit status is 0 when at least one session acknowledged the command, 1 otherwise.
"""

import glob
import json
import os
import socket
import sys
from typing import List, Optional

import tvchan as tc


DEBUG = os.environ.get("TVCHAN_SEND_DEBUG") == "1"
SEND_TIMEOUT = 0.5
REQUEST_ID = 1


def debug(msg: str) -> None:
    if DEBUG:
        print(f"[tvchan-send-cmd] {msg}", file=sys.stderr)


def usage() -> int:
    names = "|".join(c.value for c in tc.Command)
    print(f"Usage: {os.path.basename(sys.argv[0])} {{{names}}} [SOCKET_GLOB]", file=sys.stderr)
    return 1


def command_payload(action: str) -> Optional[dict]:
    try:
        cmd = tc.Command(action.lower())
    except ValueError:
        return None
    return {"command": ["print-text", f"{tc.CMD_PREFIX}{cmd.value}"], "request_id": REQUEST_ID}


def target_sockets(pattern: Optional[str] = None) -> List[str]:
    if pattern is None:
        debug(f"Looking for sessions in {tc.socket_dir()}")
        return list(tc.session_sockets().values())
    debug(f"Using socket glob: {pattern}")
    return [p for p in sorted(glob.glob(pattern)) if tc.is_socket(p)]


def remove_stale(path: str) -> None:
    try:
        os.unlink(path)
        debug(f"Deleted stale socket {path}")
    except FileNotFoundError:
        debug(f"Stale socket {path} vanished before unlink")
    except OSError as e:
        debug(f"Failed to delete stale socket {path}: {e!r}")


def deliver(path: str, payload: dict) -> bool:
    """Send one command and report whether mpv acknowledged it."""
    debug(f"Sending to socket: {path}")
    data = json.dumps(payload, separators=(",", ":")).encode("utf-8") + b"\n"
    chunks: List[bytes] = []
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(SEND_TIMEOUT)
            s.connect(path)
            s.sendall(data)
            try:
                s.shutdown(socket.SHUT_WR)
            except OSError as e:
                debug(f"shutdown() failed on {path}: {e!r}")

            while True:
                try:
                    chunk = s.recv(4096)
                except socket.timeout:
                    debug(f"recv() timeout on {path}")
                    break
                if not chunk:
                    break
                chunks.append(chunk)
    except ConnectionRefusedError as e:
        # Socket file exists but nothing is listening -> stale.
        debug(f"Connection refused on {path}, treating as stale: {e!r}")
        remove_stale(path)
        return False
    except OSError as e:
        debug(f"OSError talking to {path}: {e!r}")
        return False

    reply = tc.parse_reply(b"".join(chunks).decode("utf-8", errors="ignore"), payload.get("request_id"))
    if reply is None or reply.get("error") != "success":
        debug(f"No acknowledgement from {path}: {reply!r}")
        return False
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args:
        return usage()

    payload = command_payload(args[0])
    if payload is None:
        print(f"[tvchan-send-cmd] unknown command: {args[0]}", file=sys.stderr)
        return usage()

    sockets = target_sockets(args[1] if len(args) >= 2 else None)
    debug(f"Filtered sockets (type=SOCK): {sockets!r}")
    if not sockets:
        print("[tvchan-send-cmd] no running tvchan session found", file=sys.stderr)
        return 1

    delivered = sum(1 for path in sockets if deliver(path, payload))
    print(f"[tvchan-send-cmd] {args[0].lower()}: delivered to {delivered}/{len(sockets)} session(s)", file=sys.stderr)
    return 0 if delivered else 1


if __name__ == "__main__":
    raise SystemExit(main())
