import socket

import pytest

import tvchan as tc


class TestMpvIPC:
    def test_missing_socket_returns_none(self, tmp_path):
        ipc = tc.MpvIPC(str(tmp_path / "nope.sock"))
        assert ipc.send({"command": ["stop"]}) is None
        assert ipc.query("get_property", "path") is None
        ipc.command("stop")

    def test_command_is_sent_as_json_line(self, server_factory):
        srv = server_factory(lambda req: [{"error": "success"}])
        tc.MpvIPC(srv.path).command("loadfile", "/v/it's \"odd\".mkv", "replace")
        assert srv.received == [{"command": ["loadfile", "/v/it's \"odd\".mkv", "replace"]}]

    def test_query_matches_request_id_past_events(self, server_factory):
        def reply(req):
            return [
                {"event": "idle"},
                {"error": "success", "data": "/v/a.mkv", "request_id": req["request_id"]},
            ]

        srv = server_factory(reply)
        out = tc.MpvIPC(srv.path).query("get_property", "path")
        assert out["data"] == "/v/a.mkv"

    def test_stale_socket_file_returns_none(self, tmp_path):
        path = str(tmp_path / "stale.sock")
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.bind(path)
        s.close()
        assert tc.MpvIPC(path).send({"command": ["stop"]}) is None


class TestParseReply:
    def test_prefers_matching_request_id(self):
        text = '{"error":"success","request_id":1}\n{"error":"property unavailable","request_id":2}\n'
        assert tc.parse_reply(text, 2)["error"] == "property unavailable"

    def test_falls_back_to_first_error_object(self):
        text = 'garbage\n{"event":"start-file"}\n{"error":"success","data":null}\n'
        assert tc.parse_reply(text, 7) == {"error": "success", "data": None}

    def test_nothing_usable(self):
        assert tc.parse_reply("", 1) is None
        assert tc.parse_reply('{"event":"idle"}\n', 1) is None


class StubIPC:
    def __init__(self, reply):
        self.reply = reply

    def query(self, *args):
        return self.reply


class TestMediaState:
    def test_playing(self):
        assert tc.media_state(StubIPC({"error": "success", "data": "/v/a.mkv"})) == tc.MEDIA_PLAYING

    def test_idle(self):
        assert tc.media_state(StubIPC({"error": "property unavailable"})) == tc.MEDIA_IDLE

    @pytest.mark.parametrize("reply", [None, {"error": "invalid parameter"}, {}])
    def test_unknown(self, reply):
        assert tc.media_state(StubIPC(reply)) == tc.MEDIA_UNKNOWN


class TestWaitForIpc:
    def test_times_out_when_missing(self, tmp_path):
        assert tc.wait_for_ipc(str(tmp_path / "nope.sock"), timeout=0.1) is False

    def test_ready_socket(self, server_factory):
        srv = server_factory(lambda req: [])
        assert tc.wait_for_ipc(srv.path, timeout=0.1) is True

    def test_regular_file_is_not_a_socket(self, tmp_path):
        p = tmp_path / "plain"
        p.write_text("x")
        assert tc.wait_for_ipc(str(p), timeout=0.1) is False


class TestSessionSockets:
    def test_keyed_by_pid(self, monkeypatch, tmp_path, server_factory):
        monkeypatch.setenv(tc.SOCKET_DIR_ENV, str(tmp_path))
        a = server_factory(lambda req: [], tmp_path / "tvchan-12.sock")
        server_factory(lambda req: [], tmp_path / "tvchan-x.sock")
        (tmp_path / "tvchan-13.sock").write_text("not a socket")

        assert tc.session_sockets() == {12: a.path}

    def test_liveness(self, tmp_path, server_factory):
        live = server_factory(lambda req: [], tmp_path / "tvchan-1.sock")
        stale = tmp_path / "tvchan-2.sock"
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.bind(str(stale))
        s.close()

        assert tc.socket_is_live(live.path) is True
        assert tc.socket_is_live(str(stale)) is False
