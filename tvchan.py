#!/usr/bin/env python3
"""
tvchan - channel surfing over a pile of video files.

Starts mpv, feeds it random files from the watched directories (each one
started at a random position) and keeps a navigable history, so back/forward
replay exactly what was shown before. Keys bound inside mpv come back to us
as `print-text tvchan-cmd:<command>` lines on mpv's stdout; everything we tell
mpv goes over its JSON IPC socket.
"""

from __future__ import annotations

import argparse
import dataclasses
import enum
import glob
import json
import math
import os
import platform
import random
import re
import select
import shlex
import shutil
import signal
import socket
import stat
import subprocess
import sys
import tempfile
import termios
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence

# -----------------
# Constants / config
# -----------------

VIDEO_EXTS = ["avi", "flv", "m4v", "mkv", "mov", "mp4", "mpeg", "mpg", "ogm", "ogv", "ts", "webm", "wmv"]
PLAYER_BIN = "mpv"
DURATION_PROBE_BIN = "ffprobe"
TITLE_PROBE_BIN = "ffprobe"
CMD_PREFIX = "tvchan-cmd:"
DEFAULT_AUTOSKIP_MS = 30000
POLL_TIMEOUT = 0.5
IPC_WAIT_TIMEOUT = 1.0
LIVENESS_GRACE = 1.0  # seconds after a load during which "idle" is not trusted yet
MESSAGE_MAX_LEN = 80
MESSAGE_DURATION_MS = 1500
SOCKET_DIR_ENV = "TVCHAN_SOCKET_DIR"
INPUT_CONF_ENV = "TVCHAN_INPUT_CONF"
CACHE_DIR_ENV = "TVCHAN_CACHE_DIR"
DEFAULT_SOCKET_DIR = Path("/tmp")
SOCKET_NAME_RE = re.compile(r"^tvchan-(\d+)\.sock$")

MEDIA_PLAYING = "playing"
MEDIA_IDLE = "idle"
MEDIA_UNKNOWN = "unknown"

DEBUG = os.environ.get("TVCHAN_DEBUG") == "1"

# --------------
# Logging helpers
# --------------

def log_debug(msg: str) -> None:
    if DEBUG:
        print(f"[debug] {msg}", file=sys.stderr)


def log_info(msg: str) -> None:
    print(f"[info] {msg}", file=sys.stderr)


def log_warn(msg: str) -> None:
    print(f"[warn] {msg}", file=sys.stderr)


def log_error(msg: str) -> None:
    print(f"[error] {msg}", file=sys.stderr)


def die(msg: str, code: int = 1) -> None:
    log_error(msg)
    sys.exit(code)


# ----------
# Exceptions
# ----------

class TvchanError(Exception):
    """Fatal condition; the top level kills mpv and exits non-zero."""


class PlaylistEmpty(TvchanError):
    pass


class UnknownCommand(TvchanError, ValueError):
    pass


class PlayerDied(TvchanError):
    pass


# ---------
# Commands
# ---------

class Command(enum.Enum):
    BACK = "back"
    FORWARD = "forward"
    END = "end"
    QUIT = "quit"
    AUTOSKIP = "autoskip"
    QUITALL = "quitall"


# mpv key name -> command. Several keys may share a command.
DEFAULT_KEY_MAP: Dict[str, Command] = {
    "PGUP": Command.BACK,
    "b": Command.BACK,
    "MBTN_BACK": Command.BACK,
    "PGDWN": Command.FORWARD,
    "n": Command.FORWARD,
    "ENTER": Command.FORWARD,
    "MBTN_FORWARD": Command.FORWARD,
    "END": Command.END,
    "e": Command.END,
    "a": Command.AUTOSKIP,
    "q": Command.QUIT,
    "ESC": Command.QUIT,
    "CLOSE_WIN": Command.QUIT,
    "Q": Command.QUITALL,
}

CMD_RE = re.compile(re.escape(CMD_PREFIX) + r"(\S*)")


def extract_command(line: str) -> Optional[str]:
    m = CMD_RE.search(line)
    if not m:
        return None
    return m.group(1)


def parse_command(token: str) -> Command:
    try:
        return Command(token.strip())
    except ValueError:
        raise UnknownCommand(f"unknown command: {token!r}") from None


# -------------
# Data classes
# -------------

@dataclasses.dataclass(frozen=True)
class HistoryEntry:
    path: str
    position: float
    duration: float


@dataclasses.dataclass(frozen=True)
class PlayOptions:
    unique: bool = False
    begin: bool = False
    show_progress: bool = False
    show_message: bool = False
    load_delay_ms: int = 0
    autoskip_delay_ms: int = DEFAULT_AUTOSKIP_MS


# ----------------
# Utility functions
# ----------------

def lower_ext(path: str) -> str:
    _, ext = os.path.splitext(path)
    return ext[1:].lower()


def strip_ansi(s: str) -> str:
    return re.sub(r"\x1B\[[0-9;]*[mK]", "", s)


def visible_len(s: str) -> int:
    s = strip_ansi(s)
    for emoji in ("📺", "🔀", "💾", "⏩", "🎲", "🎯"):
        s = s.replace(emoji, "aa")
    return len(s)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def format_hms(seconds: float) -> str:
    total = max(0, round_half_up(seconds))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def percent(position: float, duration: float) -> int:
    if not duration:
        return 0
    return round_half_up(100 * position / duration)


def truncate_message(msg: str, limit: int = MESSAGE_MAX_LEN) -> str:
    # Keep the tail: the time/percentage suffix matters more than the path.
    if len(msg) <= limit:
        return msg
    return msg[-limit:]


def is_empty_file(path: str) -> bool:
    try:
        return os.path.getsize(path) == 0
    except OSError:
        return True


# --------------
# External probes
# --------------

def probe_duration(path: str) -> Optional[float]:
    cmd = [DURATION_PROBE_BIN, "-v", "error", "-show_entries", "format=duration", "-of", "csv=p=0", path]
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
    except OSError as exc:
        log_debug(f"{DURATION_PROBE_BIN} failed for {path}: {exc!r}")
        return None
    if proc.returncode != 0:
        return None
    lines = proc.stdout.strip().splitlines()
    if not lines:
        return None
    try:
        value = float(lines[0].strip())
    except ValueError:
        return None
    if math.isnan(value) or math.isinf(value) or value < 0:
        return None
    return value


def probe_title(path: str) -> Optional[str]:
    cmd = [TITLE_PROBE_BIN, "-v", "error", "-show_entries", "format_tags=title", "-of", "default=nw=1:nk=1", path]
    try:
        proc = subprocess.run(cmd, check=False, capture_output=True, text=True)
    except OSError as exc:
        log_debug(f"{TITLE_PROBE_BIN} failed for {path}: {exc!r}")
        return None
    if proc.returncode != 0:
        return None
    title = proc.stdout.strip()
    return title or None


# ------------------
# Playlist state
# ------------------

@dataclasses.dataclass
class PlaylistState:
    """
    Candidate pool plus play history with a cursor into it.

    cursor < len(history) replays a recorded entry; cursor == len(history) is
    the frontier, where the next load draws a fresh random entry from pool.
    """

    pool: List[str]
    options: PlayOptions = dataclasses.field(default_factory=PlayOptions)
    watched_dirs: List[str] = dataclasses.field(default_factory=list)
    history: List[HistoryEntry] = dataclasses.field(default_factory=list)
    cursor: int = 0
    autoskip: bool = False
    playback_start: Optional[float] = None
    duration_probe: Callable[[str], Optional[float]] = probe_duration

    @property
    def at_frontier(self) -> bool:
        return self.cursor >= len(self.history)

    def back(self) -> HistoryEntry:
        self.cursor = max(0, self.cursor - 1)
        return self.load()

    def forward(self) -> HistoryEntry:
        self.cursor = min(len(self.history), self.cursor + 1)
        return self.load()

    def end(self) -> HistoryEntry:
        self.cursor = len(self.history)
        return self.load()

    def load(self) -> HistoryEntry:
        if not self.at_frontier:
            return self.history[self.cursor]
        entry = self._new_entry()
        self.history.append(entry)
        return entry

    def toggle_autoskip(self) -> bool:
        self.autoskip = not self.autoskip
        return self.autoskip

    def _pick_path(self) -> str:
        while True:
            if not self.pool:
                raise PlaylistEmpty("no playable files left to choose from")
            idx = random.randrange(len(self.pool))
            path = self.pool[idx]
            if is_empty_file(path):
                log_warn(f"dropping empty file: {path}")
                del self.pool[idx]
                continue
            if self.options.unique:
                del self.pool[idx]
            return path

    def _new_entry(self) -> HistoryEntry:
        path = self._pick_path()
        duration = self.duration_probe(path)
        if duration is None:
            log_warn(f"could not read duration of {path}; using 0")
            duration = 0.0
        if self.options.begin:
            position = 0.0
        else:
            position = round(random.random() * duration, 2)
        return HistoryEntry(path=path, position=position, duration=duration)

    def relative_name(self, path: str) -> str:
        for root in self.watched_dirs:
            prefix = root.rstrip(os.sep) + os.sep
            if path.startswith(prefix):
                return path[len(prefix):]
        return path

    def display_message(self, entry: HistoryEntry) -> str:
        pct = percent(entry.position, entry.duration)
        msg = f"{self.relative_name(entry.path)}  {format_hms(entry.position)}/{format_hms(entry.duration)} ({pct}%)"
        return truncate_message(msg)


# ----------------
# File discovery
# ----------------

def find_media_files(roots: Sequence[str], exts: Sequence[str]) -> List[str]:
    allowed = {e.lower().lstrip(".") for e in exts}
    seen: set[str] = set()
    found: List[str] = []

    def add(p: str) -> None:
        if p not in seen and lower_ext(p) in allowed:
            seen.add(p)
            found.append(p)

    for root in roots:
        if os.path.isfile(root):
            add(root)
            continue
        for dirpath, dirnames, files in os.walk(root):
            dirnames.sort()
            for name in sorted(files):
                add(os.path.join(dirpath, name))
    return found


# ----------------------
# Title filter (cached)
# ----------------------

def default_cache_dir() -> Path:
    override = os.environ.get(CACHE_DIR_ENV)
    if override:
        return Path(override).expanduser()
    if platform.system().lower() == "darwin":
        base = Path.home() / "Library" / "Caches"
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME", Path.home() / ".cache"))
    return base / "tvchan"


class TitleCache:
    """path -> {"mtime", "title"}; an entry is stale once the file's mtime changes."""

    def __init__(self, path: Path):
        self.path = path
        self.entries: Dict[str, Dict[str, object]] = {}
        self.dirty = False

    def load(self) -> None:
        if not self.path.is_file():
            log_debug(f"title cache not found at {self.path}")
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            log_warn(f"title cache: failed to read {self.path}: {exc}")
            return
        if not isinstance(data, dict):
            log_warn(f"title cache: ignoring malformed {self.path}")
            return
        self.entries = {k: v for k, v in data.items() if isinstance(v, dict)}

    def save(self) -> None:
        if not self.dirty:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("w", encoding="utf-8") as fh:
                json.dump(self.entries, fh, indent=2)
            self.dirty = False
        except OSError as exc:
            log_warn(f"title cache: failed to write {self.path}: {exc}")

    def title_for(self, media: str, probe: Callable[[str], Optional[str]] = probe_title) -> Optional[str]:
        try:
            mtime = os.path.getmtime(media)
        except OSError:
            return None
        hit = self.entries.get(media)
        if hit is not None and hit.get("mtime") == mtime:
            return str(hit.get("title") or "") or None
        title = probe(media)
        self.entries[media] = {"mtime": mtime, "title": title or ""}
        self.dirty = True
        return title


def filter_by_title(
    paths: Sequence[str],
    query: str,
    cache: TitleCache,
    probe: Callable[[str], Optional[str]] = probe_title,
) -> List[str]:
    needle = query.lower()
    kept: List[str] = []
    for p in paths:
        title = cache.title_for(p, probe) or os.path.basename(p)
        if needle in title.lower():
            kept.append(p)
    log_info(f"title filter {query!r}: {len(kept)} of {len(paths)} files match")
    return kept


# ----------------
# Key bindings
# ----------------

def default_input_conf_path() -> Path:
    override = os.environ.get(INPUT_CONF_ENV)
    if override:
        return Path(override).expanduser()
    base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return base / "tvchan" / "input.conf"


def render_input_conf(key_map: Dict[str, Command], extra_text: str = "") -> str:
    lines = [f"{key} print-text {CMD_PREFIX}{cmd.value}" for key, cmd in key_map.items()]
    text = "\n".join(lines) + "\n"
    if extra_text:
        text += extra_text
    return text


def write_input_conf(path: Path, key_map: Dict[str, Command], extra_path: Optional[Path]) -> None:
    extra_text = ""
    if extra_path and extra_path.is_file():
        try:
            extra_text = extra_path.read_text(encoding="utf-8")
            log_debug(f"appending key bindings from {extra_path}")
        except OSError as exc:
            log_warn(f"could not read extra key bindings {extra_path}: {exc}")
    path.write_text(render_input_conf(key_map, extra_text), encoding="utf-8")


# --------------
# mpv IPC helpers
# --------------

def is_socket(path: str) -> bool:
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return False
    return stat.S_ISSOCK(st.st_mode)


def socket_dir() -> Path:
    return Path(os.environ.get(SOCKET_DIR_ENV) or DEFAULT_SOCKET_DIR)


def session_sockets(directory: Optional[Path] = None) -> Dict[int, str]:
    """Live-looking tvchan sockets in the socket dir, keyed by the owning tvchan pid."""
    base = directory or socket_dir()
    found: Dict[int, str] = {}
    for path in sorted(glob.glob(str(base / "tvchan-*.sock"))):
        m = SOCKET_NAME_RE.match(os.path.basename(path))
        if m and is_socket(path):
            found[int(m.group(1))] = path
    return found


def socket_is_live(path: str, timeout: float = 0.3) -> bool:
    try:
        with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as s:
            s.settimeout(timeout)
            s.connect(path)
        return True
    except OSError:
        return False


class MpvIPC:
    def __init__(self, path: str):
        self.path = path
        self._next_id = 0

    def send(self, payload: dict) -> Optional[str]:
        if not os.path.exists(self.path):
            log_debug(f"ipc socket missing: {self.path}")
            return None
        data = json.dumps(payload, separators=(",", ":"))
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.connect(self.path)
            sock.sendall(data.encode("utf-8") + b"\n")
            sock.shutdown(socket.SHUT_WR)
            # mpv answers queued commands before it closes on our EOF.
            chunks: List[bytes] = []
            while True:
                chunk = sock.recv(4096)
                if not chunk:
                    break
                chunks.append(chunk)
            return b"".join(chunks).decode("utf-8", errors="ignore")
        except OSError as exc:
            log_debug(f"ipc error on {self.path}: {exc!r}")
            return None
        finally:
            try:
                sock.close()
            except OSError:
                pass

    def command(self, *args: object) -> None:
        self.send({"command": list(args)})

    def query(self, *args: object) -> Optional[dict]:
        self._next_id += 1
        request_id = self._next_id
        resp = self.send({"command": list(args), "request_id": request_id})
        if resp is None:
            return None
        return parse_reply(resp, request_id)


def parse_reply(text: str, request_id: Optional[int] = None) -> Optional[dict]:
    fallback: Optional[dict] = None
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except ValueError:
            continue
        if not isinstance(obj, dict) or "event" in obj:
            continue
        if request_id is not None and obj.get("request_id") == request_id:
            return obj
        if fallback is None and "error" in obj:
            fallback = obj
    return fallback


def media_state(ipc: MpvIPC) -> str:
    reply = ipc.query("get_property", "path")
    if reply is None:
        return MEDIA_UNKNOWN
    err = reply.get("error")
    if err == "success":
        return MEDIA_PLAYING
    if err == "property unavailable":
        return MEDIA_IDLE
    return MEDIA_UNKNOWN


def wait_for_ipc(path: str, timeout: float = IPC_WAIT_TIMEOUT) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        if is_socket(path):
            return True
        time.sleep(0.05)
    return is_socket(path)


# ------------------
# Terminal / processes
# ------------------

def save_terminal() -> Optional[list]:
    if not sys.stdin.isatty():
        return None
    try:
        return termios.tcgetattr(sys.stdin.fileno())
    except termios.error as exc:
        log_debug(f"could not save terminal state: {exc}")
        return None


def restore_terminal(attrs: Optional[list]) -> None:
    if attrs is None:
        return
    try:
        termios.tcsetattr(sys.stdin.fileno(), termios.TCSADRAIN, attrs)
    except (termios.error, OSError) as exc:
        log_warn(f"could not restore terminal state: {exc}")


def kill_all_players() -> None:
    # Siblings first: once their mpv is gone their sockets stop answering.
    me = os.getpid()
    for pid, path in session_sockets().items():
        if pid == me:
            continue
        if not socket_is_live(path):
            log_debug(f"skipping stale session socket {path}")
            continue
        try:
            os.kill(pid, signal.SIGKILL)
        except OSError as exc:
            log_debug(f"kill {pid} failed: {exc!r}")
    try:
        subprocess.Popen(["pkill", "-9", "-x", PLAYER_BIN], stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as exc:
        log_warn(f"pkill {PLAYER_BIN} failed: {exc}")


# ------------------
# Playback controller
# ------------------

class PlaybackController:
    def __init__(
        self,
        ipc: MpvIPC,
        proc: subprocess.Popen,
        options: PlayOptions,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        term_attrs: Optional[list] = None,
        tmp_dir: Optional[Path] = None,
    ):
        self.ipc = ipc
        self.proc = proc
        self.options = options
        self.clock = clock
        self.sleep = sleep
        self.term_attrs = term_attrs
        self.tmp_dir = tmp_dir

    def ensure_alive(self) -> None:
        if self.proc.poll() is not None:
            raise PlayerDied(f"{PLAYER_BIN} exited (status {self.proc.returncode})")

    def play(self, state: PlaylistState, entry: HistoryEntry) -> None:
        self.ipc.command("stop")
        if self.options.load_delay_ms > 0:
            self.sleep(self.options.load_delay_ms / 1000)
        state.playback_start = self.clock()
        self.ipc.command("set_property", "start", f"{entry.position:.2f}")
        self.ipc.command("loadfile", entry.path, "replace")
        msg = state.display_message(entry)
        if self.options.show_message:
            self.ipc.command("show-text", msg, MESSAGE_DURATION_MS)
        if self.options.show_progress:
            self.ipc.command("show-progress")
        log_info(f"[{state.cursor + 1}/{len(state.history)}] {msg}")

    def shutdown(self) -> None:
        if self.proc.poll() is None:
            self.proc.kill()
            try:
                self.proc.wait(timeout=1)
            except subprocess.TimeoutExpired:
                log_warn(f"{PLAYER_BIN} did not exit after kill")
        restore_terminal(self.term_attrs)
        try:
            if os.path.exists(self.ipc.path):
                os.remove(self.ipc.path)
        except OSError:
            pass
        if self.tmp_dir is not None:
            shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def quit(self) -> None:
        self.ipc.command("quit")
        self.shutdown()
        sys.exit(0)

    def quit_all(self) -> None:
        self.ipc.command("quit")
        self.shutdown()
        kill_all_players()
        sys.exit(1)


# ---------------------------
# Event loop / dispatcher
# ---------------------------

NAVIGATION: Dict[Command, Callable[[PlaylistState], HistoryEntry]] = {
    Command.BACK: PlaylistState.back,
    Command.FORWARD: PlaylistState.forward,
    Command.END: PlaylistState.end,
}


def dispatch(cmd: Command, state: PlaylistState, controller: PlaybackController) -> None:
    log_info(f"command: {cmd.value}")
    if cmd in NAVIGATION:
        controller.ensure_alive()
        entry = NAVIGATION[cmd](state)
        controller.play(state, entry)
    elif cmd is Command.AUTOSKIP:
        enabled = state.toggle_autoskip()
        log_info(f"autoskip {'on' if enabled else 'off'} ({state.options.autoskip_delay_ms} ms)")
    elif cmd is Command.QUIT:
        controller.quit()
    elif cmd is Command.QUITALL:
        controller.quit_all()


def autoskip_due(state: PlaylistState, now: float) -> bool:
    if not state.autoskip or state.playback_start is None:
        return False
    return (now - state.playback_start) * 1000 > state.options.autoskip_delay_ms


def next_wait(state: PlaylistState, now: float) -> float:
    wait = POLL_TIMEOUT
    if state.autoskip and state.playback_start is not None:
        remaining = state.playback_start + state.options.autoskip_delay_ms / 1000 - now
        wait = min(wait, max(0.0, remaining))
    return wait


def in_load_grace(state: PlaylistState, now: float) -> bool:
    return state.playback_start is not None and now - state.playback_start < LIVENESS_GRACE


class LineReader:
    """Splits a non-blocking pipe into complete text lines."""

    def __init__(self, fd: int):
        self.fd = fd
        self.buf = b""
        self.eof = False
        os.set_blocking(fd, False)

    def fileno(self) -> int:
        return self.fd

    def read_lines(self) -> List[str]:
        try:
            chunk = os.read(self.fd, 4096)
        except BlockingIOError:
            return []
        if not chunk:
            self.eof = True
            rest, self.buf = self.buf, b""
            return [rest.decode("utf-8", errors="replace")] if rest else []
        self.buf += chunk
        *complete, self.buf = self.buf.split(b"\n")
        return [line.decode("utf-8", errors="replace").rstrip("\r") for line in complete]


def loop_once(
    state: PlaylistState,
    controller: PlaybackController,
    reader: LineReader,
    clock: Callable[[], float] = time.time,
) -> None:
    # Channel unreachable reads as "unknown" and never auto-advances.
    if not in_load_grace(state, clock()) and media_state(controller.ipc) == MEDIA_IDLE:
        log_info("nothing playing, moving forward")
        dispatch(Command.FORWARD, state, controller)

    if autoskip_due(state, clock()):
        log_info(f"autoskip: {state.options.autoskip_delay_ms} ms elapsed")
        dispatch(Command.FORWARD, state, controller)

    ready, _, _ = select.select([reader], [], [], next_wait(state, clock()))
    if ready:
        for line in reader.read_lines():
            print(line, flush=True)
            token = extract_command(line)
            if token is None:
                continue
            dispatch(parse_command(token), state, controller)

    if reader.eof:
        controller.ensure_alive()
        # stdout closed but the process lingers; wait for it so the next pass sees it dead.
        try:
            controller.proc.wait(timeout=POLL_TIMEOUT)
        except subprocess.TimeoutExpired:
            pass
        controller.ensure_alive()


def run_loop(state: PlaylistState, controller: PlaybackController, reader: LineReader) -> None:
    while True:
        loop_once(state, controller, reader)


# -----------------
# Argument parsing
# -----------------

def usage_text() -> str:
    return (
        "Usage:\n"
        "  tvchan [options] DIR [DIR...]\n\n"
        "Plays random video files found under DIR(s) in mpv, each from a random position.\n"
        "Keys (inside mpv): PGUP/b back, PGDWN/n/ENTER forward, END/e newest, a autoskip,\n"
        "                   q/ESC quit, Q quit and kill every mpv and tvchan.\n\n"
        "Options:\n"
        "  --begin                      Start every file at 0 instead of a random position.\n"
        "  --unique                     Never pick the same file twice in one run.\n"
        "  --autoskip                   Start with autoskip on.\n"
        f"  --autoskip-delay <ms>        Autoskip after this long (default {DEFAULT_AUTOSKIP_MS}).\n"
        "  --load-delay <ms>            Pause between stop and the next load (default 0).\n"
        "  --progress                   Show mpv's progress bar after each load.\n"
        "  --message                    Show file name and position on screen after each load.\n"
        "  --no-osd                     Disable mpv's on-screen display.\n"
        "  --osd-level <n>              Pass --osd-level to mpv.\n"
        "  --title-filter <text>        Only play files whose title tag (or name) contains <text>.\n"
        "  --window-title <text>        mpv window title.\n"
        "  --geometry <WxH+X+Y>         mpv window geometry.\n"
        "  --fullscreen                 Start mpv fullscreen.\n"
        "  --force-window               Keep the mpv window open while idle.\n"
        f"  --ext <a,b,...>              Extensions to play (default {','.join(VIDEO_EXTS)}).\n"
        "  --mpv-additional-args <str>  Extra args for mpv (string, split like a shell).\n"
        "  -h, --help                   Show this help.\n\n"
        "Environment:\n"
        f"  {INPUT_CONF_ENV}  extra key bindings appended to the generated ones\n"
        "                     (default ~/.config/tvchan/input.conf).\n"
        f"  {SOCKET_DIR_ENV}  directory for the mpv IPC socket (default {DEFAULT_SOCKET_DIR}).\n"
        f"  {CACHE_DIR_ENV}   directory for the title cache.\n"
        "  TVCHAN_DEBUG=1     verbose diagnostics.\n"
    )


def non_negative_int(text: str) -> int:
    value = int(text)
    if value < 0:
        raise ValueError(f"must be >= 0: {text}")
    return value


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("dirs", nargs="*")
    parser.add_argument("--begin", action="store_true")
    parser.add_argument("--unique", action="store_true")
    parser.add_argument("--autoskip", action="store_true")
    parser.add_argument("--autoskip-delay", default=str(DEFAULT_AUTOSKIP_MS))
    parser.add_argument("--load-delay", default="0")
    parser.add_argument("--progress", action="store_true")
    parser.add_argument("--message", action="store_true")
    parser.add_argument("--no-osd", action="store_true")
    parser.add_argument("--osd-level")
    parser.add_argument("--title-filter")
    parser.add_argument("--window-title")
    parser.add_argument("--geometry")
    parser.add_argument("--fullscreen", action="store_true")
    parser.add_argument("--force-window", action="store_true")
    parser.add_argument("--ext")
    parser.add_argument("--mpv-additional-args")
    parser.add_argument("-h", "--help", action="store_true")

    known, unknown = parser.parse_known_args(argv)
    if known.help:
        print(usage_text())
        sys.exit(0)
    if unknown:
        die(f"Unsupported argument(s): {' '.join(unknown)}")
    if not known.dirs:
        die("At least one directory is required")
    for d in known.dirs:
        if not os.path.exists(d):
            die(f"Path not found: {d}")

    try:
        autoskip_delay = non_negative_int(known.autoskip_delay)
        load_delay = non_negative_int(known.load_delay)
    except ValueError as e:
        die(f"Invalid delay: {e}")

    if known.no_osd and known.osd_level is not None:
        die("--no-osd and --osd-level are mutually exclusive")
    if known.osd_level is not None and known.osd_level not in ("0", "1", "2", "3"):
        die(f"Invalid --osd-level: {known.osd_level}")

    exts = list(VIDEO_EXTS)
    if known.ext:
        exts = [e.strip().lower().lstrip(".") for e in known.ext.split(",") if e.strip()]
        if not exts:
            die("--ext needs at least one extension")

    mpv_additional_args: List[str] = []
    if known.mpv_additional_args:
        try:
            mpv_additional_args = shlex.split(known.mpv_additional_args)
        except ValueError as e:
            die(f"Failed to parse --mpv-additional-args: {e}")

    return argparse.Namespace(
        dirs=[os.path.abspath(d) for d in known.dirs],
        begin=known.begin,
        unique=known.unique,
        autoskip=known.autoskip,
        autoskip_delay=autoskip_delay,
        load_delay=load_delay,
        progress=known.progress,
        message=known.message,
        osd_level="0" if known.no_osd else known.osd_level,
        title_filter=known.title_filter,
        window_title=known.window_title,
        geometry=known.geometry,
        fullscreen=known.fullscreen,
        force_window=known.force_window,
        exts=exts,
        mpv_additional_args=mpv_additional_args,
    )


def options_from_args(args: argparse.Namespace) -> PlayOptions:
    return PlayOptions(
        unique=args.unique,
        begin=args.begin,
        show_progress=args.progress,
        show_message=args.message,
        load_delay_ms=args.load_delay,
        autoskip_delay_ms=args.autoskip_delay,
    )


def build_mpv_args(args: argparse.Namespace, ipc_path: str, input_conf: Path) -> List[str]:
    mpv_args = list(args.mpv_additional_args)
    mpv_args.extend(["--idle=yes", "--keep-open=no", f"--input-ipc-server={ipc_path}", f"--input-conf={input_conf}"])
    if args.osd_level is not None:
        mpv_args.append(f"--osd-level={args.osd_level}")
    if args.window_title:
        mpv_args.append(f"--title={args.window_title}")
    if args.geometry:
        mpv_args.append(f"--geometry={args.geometry}")
    if args.fullscreen:
        mpv_args.append("--fs")
    if args.force_window:
        mpv_args.append("--force-window=yes")
    return mpv_args


# -------------------
# Startup helpers
# -------------------

def check_dependencies() -> None:
    if shutil.which(PLAYER_BIN) is None:
        die(f"{PLAYER_BIN} not found in PATH")
    if shutil.which(DURATION_PROBE_BIN) is None:
        log_warn(f"{DURATION_PROBE_BIN} not found in PATH; every file will start at 0")


def socket_path_for(pid: int) -> str:
    return str(socket_dir() / f"tvchan-{pid}.sock")


def start_mpv(mpv_args: List[str]) -> subprocess.Popen:
    return subprocess.Popen([PLAYER_BIN, *mpv_args], stdout=subprocess.PIPE)


def print_header(args: argparse.Namespace, options: PlayOptions, total: int, socket_path: str) -> None:
    header_lines = ["\033[35m📺 tvchan 📺\033[0m", "---"]
    for d in args.dirs:
        header_lines.append(f"💾 {d}")
    header_lines.append(f"🎲 Files: {total}")
    if options.unique:
        header_lines.append("🎯 Unique: each file plays once")
    if options.begin:
        header_lines.append("Start: beginning of file")
    else:
        header_lines.append("🔀 Start: random position")
    if args.autoskip:
        header_lines.append(f"⏩ Autoskip: on ({options.autoskip_delay_ms} ms)")
    header_lines.append("---")
    header_lines.append(f"Socket: {socket_path}")

    inner_width = max(visible_len(line) for line in header_lines if line != "---")

    print("\033[36m╔" + "═" * (inner_width + 2) + "╗\033[0m", file=sys.stderr)
    is_first = True
    for line in header_lines:
        if line == "---":
            print("\033[36m╟" + "─" * (inner_width + 2) + "╢\033[0m", file=sys.stderr)
            continue
        pad_len = max(inner_width - visible_len(line), 0)
        left_pad = 0
        if is_first:
            left_pad = pad_len // 2
            pad_len -= left_pad
            is_first = False
        print(f"\033[36m║\033[0m {' ' * left_pad}{line}{' ' * pad_len} \033[36m║\033[0m", file=sys.stderr)
    print("\033[36m╚" + "═" * (inner_width + 2) + "╝\033[0m", file=sys.stderr)


def collect_pool(args: argparse.Namespace) -> List[str]:
    pool = find_media_files(args.dirs, args.exts)
    if args.title_filter:
        cache = TitleCache(default_cache_dir() / "titles.json")
        cache.load()
        pool = filter_by_title(pool, args.title_filter, cache)
        cache.save()
    if not pool:
        die(f"No media files found under {', '.join(args.dirs)}")
    return pool


def main(argv: Sequence[str]) -> None:
    args = parse_args(argv)
    options = options_from_args(args)
    check_dependencies()

    pool = collect_pool(args)
    state = PlaylistState(pool=pool, options=options, watched_dirs=list(args.dirs), autoskip=args.autoskip)

    tmp_dir = Path(tempfile.mkdtemp(prefix="tvchan-"))
    input_conf = tmp_dir / "input.conf"
    write_input_conf(input_conf, DEFAULT_KEY_MAP, default_input_conf_path())

    ipc_path = socket_path_for(os.getpid())
    if os.path.exists(ipc_path):
        os.remove(ipc_path)

    term_attrs = save_terminal()
    mpv_proc = start_mpv(build_mpv_args(args, ipc_path, input_conf))
    ipc = MpvIPC(ipc_path)
    controller = PlaybackController(ipc, mpv_proc, options, term_attrs=term_attrs, tmp_dir=tmp_dir)
    if not wait_for_ipc(ipc_path):
        controller.shutdown()
        die(f"mpv IPC socket did not appear at {ipc_path}")

    print_header(args, options, len(pool), ipc_path)

    assert mpv_proc.stdout is not None
    reader = LineReader(mpv_proc.stdout.fileno())
    try:
        controller.ensure_alive()
        controller.play(state, state.load())
        run_loop(state, controller, reader)
    except TvchanError as exc:
        controller.shutdown()
        die(str(exc))
    except KeyboardInterrupt:
        controller.shutdown()
        sys.exit(130)


def cli() -> None:
    main(sys.argv[1:])


if __name__ == "__main__":
    cli()
