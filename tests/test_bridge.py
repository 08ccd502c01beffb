import json
import threading

from websockets.sync.server import serve

from nr5g_analyzer.bridge import BridgeConnection, SendResult


def test_bridge_send_before_open_reports_error() -> None:
    bridge = BridgeConnection(
        "ws://127.0.0.1:9",
        on_open=lambda: None,
        on_message=lambda message: None,
        on_error=lambda detail: None,
        on_close=lambda: None,
    )
    assert bridge.send({"type": "command", "command": "startCapture"}) == SendResult(
        ok=False, error="WebSocket not open"
    )
    assert not bridge.is_open


def test_bridge_round_trip() -> None:
    received = []

    def handler(websocket) -> None:
        for message in websocket:
            received.append(json.loads(message))
            websocket.send(json.dumps({"type": "heartbeat"}))

    with serve(handler, "127.0.0.1", 0) as server:
        threading.Thread(target=server.serve_forever, daemon=True).start()
        port = server.socket.getsockname()[1]

        opened = threading.Event()
        closed = threading.Event()
        got_message = threading.Event()
        messages = []

        def on_message(message) -> None:
            messages.append(message)
            got_message.set()

        bridge = BridgeConnection(
            f"ws://127.0.0.1:{port}",
            on_open=opened.set,
            on_message=on_message,
            on_error=lambda detail: None,
            on_close=closed.set,
        )
        bridge.start()
        assert opened.wait(5)
        assert bridge.send({"type": "handshake", "client": "nr5g-webui", "version": "0.1.0"}).ok
        assert got_message.wait(5)
        bridge.close()
        assert closed.wait(5)

    assert received == [{"type": "handshake", "client": "nr5g-webui", "version": "0.1.0"}]
    assert json.loads(messages[0]) == {"type": "heartbeat"}


def test_bridge_connection_refused_reports_error_and_close() -> None:
    errors = []
    closed = threading.Event()
    # Port 9 (discard) is not listening for websockets in the test environment.
    bridge = BridgeConnection(
        "ws://127.0.0.1:9",
        on_open=lambda: None,
        on_message=lambda message: None,
        on_error=errors.append,
        on_close=closed.set,
        open_timeout=1.0,
    )
    bridge.start()
    assert closed.wait(5)
    assert errors


def test_bridge_keeps_receiving_after_handler_error() -> None:
    def handler(websocket) -> None:
        websocket.send(json.dumps({"type": "heartbeat", "payload": 1}))
        websocket.send(json.dumps({"type": "heartbeat", "payload": 2}))
        for _ in websocket:
            pass

    with serve(handler, "127.0.0.1", 0) as server:
        threading.Thread(target=server.serve_forever, daemon=True).start()
        port = server.socket.getsockname()[1]

        closed = threading.Event()
        second = threading.Event()
        messages = []

        def on_message(message) -> None:
            messages.append(json.loads(message))
            if len(messages) == 1:
                raise OverflowError("cannot convert float infinity to integer")
            second.set()

        bridge = BridgeConnection(
            f"ws://127.0.0.1:{port}",
            on_open=lambda: None,
            on_message=on_message,
            on_error=lambda detail: None,
            on_close=closed.set,
        )
        bridge.start()
        assert second.wait(5)
        assert bridge.is_open
        bridge.close()
        assert closed.wait(5)

    assert [message["payload"] for message in messages] == [1, 2]
