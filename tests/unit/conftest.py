import dataclasses
import json
import os
import socket
import tempfile
import threading
from typing import List, Optional

import pytest

import tvchan as tc


class FakeIPC:
    def __init__(self, path: str, media_reply: Optional[dict] = None):
        self.path = path
        self.media_reply = media_reply
        self.commands: List[tuple] = []
        self.queries: List[tuple] = []

    def command(self, *args):
        self.commands.append(args)

    def query(self, *args):
        self.queries.append(args)
        return self.media_reply

    def verbs(self) -> List[str]:
        return [c[0] for c in self.commands]


class FakeProc:
    def __init__(self):
        self.returncode: Optional[int] = None
        self.killed = False

    def poll(self):
        return self.returncode

    def kill(self):
        self.killed = True
        self.returncode = -9

    def wait(self, timeout=None):
        return self.returncode


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


PLAYING = {"error": "success", "data": "/v/a.mkv"}
IDLE = {"error": "property unavailable"}


@dataclasses.dataclass
class Rig:
    state: tc.PlaylistState
    controller: tc.PlaybackController
    ipc: FakeIPC
    proc: FakeProc
    clock: FakeClock
    sleeps: List[float]


@pytest.fixture
def make_rig(tmp_path):
    def make(n_files: int = 5, media_reply: Optional[dict] = PLAYING, autoskip: bool = False, **opts) -> Rig:
        files = []
        for i in range(n_files):
            p = tmp_path / f"show{i}.mkv"
            p.write_bytes(b"video")
            files.append(str(p))
        options = tc.PlayOptions(**opts)
        state = tc.PlaylistState(
            pool=files,
            options=options,
            watched_dirs=[str(tmp_path)],
            autoskip=autoskip,
            duration_probe=lambda p: 120.0,
        )
        sock = tmp_path / "mpv.sock"
        sock.write_text("")
        ipc = FakeIPC(str(sock), media_reply)
        proc = FakeProc()
        clock = FakeClock(1000.0)
        sleeps: List[float] = []
        controller = tc.PlaybackController(ipc, proc, options, clock=clock, sleep=sleeps.append)
        return Rig(state, controller, ipc, proc, clock, sleeps)

    return make


@pytest.fixture
def pipe_reader():
    r, w = os.pipe()
    reader = tc.LineReader(r)
    yield reader, w
    for fd in (r, w):
        try:
            os.close(fd)
        except OSError:
            pass


class FakeMpvServer:
    """Single-shot-per-connection JSON IPC server answering with a canned reply."""

    def __init__(self, reply_for, path=None):
        self.dir = None
        if path is None:
            self.dir = tempfile.mkdtemp(prefix="tvc-")
            path = os.path.join(self.dir, "s.sock")
        self.path = str(path)
        self.reply_for = reply_for
        self.received = []
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.bind(self.path)
        self.sock.listen(4)
        self.thread = threading.Thread(target=self._serve, daemon=True)
        self.thread.start()

    def _serve(self):
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            with conn:
                data = b""
                while True:
                    chunk = conn.recv(4096)
                    if not chunk:
                        break
                    data += chunk
                for line in data.decode("utf-8").splitlines():
                    req = json.loads(line)
                    self.received.append(req)
                    for out in self.reply_for(req):
                        conn.sendall(json.dumps(out).encode("utf-8") + b"\n")

    def close(self):
        self.sock.close()
        try:
            os.remove(self.path)
        except OSError:
            pass
        if self.dir:
            os.rmdir(self.dir)


@pytest.fixture
def server_factory():
    servers = []

    def make(reply_for, path=None):
        srv = FakeMpvServer(reply_for, path)
        servers.append(srv)
        return srv

    yield make
    for srv in servers:
        srv.close()
