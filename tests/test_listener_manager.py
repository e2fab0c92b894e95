import socket
import time

import pytest

import listener_manager
from listener_manager import (
    LISTEN_BACKLOG,
    NO_CONNECTION,
    ListenerError,
    ListenerErrorKind,
    accept_with_timeout,
    address_family_for,
    create_listener,
)


@pytest.fixture
def listener():
    sock = create_listener("127.0.0.1", 0)
    yield sock
    sock.close()


def bound_port(sock):
    return sock.getsockname()[1]


def test_listener_is_a_bound_stream_socket(listener):
    assert listener.type == socket.SOCK_STREAM
    assert listener.family == socket.AF_INET
    assert listener.getsockname()[0] == "127.0.0.1"
    assert bound_port(listener) > 0
    assert listener.getsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR) != 0


def test_backlog_constant():
    assert LISTEN_BACKLOG == 4


def test_second_listener_on_same_pair_fails_to_bind(listener):
    with pytest.raises(ListenerError) as excinfo:
        create_listener("127.0.0.1", bound_port(listener))
    err = excinfo.value
    assert err.kind is ListenerErrorKind.BIND_FAILED
    assert isinstance(err.__cause__, OSError)
    # nothing was cleaned up on our behalf
    assert err.endpoint is not None
    assert err.endpoint.fileno() != -1
    err.endpoint.close()


def test_same_pair_can_be_reused_after_release():
    first = create_listener("127.0.0.1", 0)
    port = bound_port(first)

    # leave a connection behind so the port goes through TIME_WAIT
    client = socket.create_connection(("127.0.0.1", port), timeout=5)
    accepted = accept_with_timeout(first, 5)
    assert accepted is not NO_CONNECTION
    accepted.close()
    client.close()
    first.close()

    second = create_listener("127.0.0.1", port)
    try:
        assert bound_port(second) == port
    finally:
        second.close()


def test_bind_to_foreign_address_fails():
    with pytest.raises(ListenerError) as excinfo:
        create_listener("203.0.113.1", 0)
    assert excinfo.value.kind is ListenerErrorKind.BIND_FAILED
    excinfo.value.endpoint.close()


def test_create_failure_has_no_endpoint(monkeypatch):
    def refuse(*args, **kwargs):
        raise OSError(24, "Too many open files")

    monkeypatch.setattr(socket, "socket", refuse)
    with pytest.raises(ListenerError) as excinfo:
        create_listener("127.0.0.1", 0)
    assert excinfo.value.kind is ListenerErrorKind.CREATE_FAILED
    assert excinfo.value.endpoint is None


def test_accept_times_out_with_no_connection(listener):
    start = time.monotonic()
    result = accept_with_timeout(listener, 1)
    elapsed = time.monotonic() - start
    assert result is NO_CONNECTION
    assert 0.5 <= elapsed < 3


def test_accept_restores_listener_timeout(listener):
    listener.settimeout(7.5)
    accept_with_timeout(listener, 0.1)
    assert listener.gettimeout() == 7.5


def test_peer_connection_is_accepted_on_wildcard_listener():
    # Wildcard listener, peer connects, accepted within five seconds. Port 0 keeps
    # the test clear of whatever already holds a fixed port such as 12345.
    server = create_listener(None, 0)
    try:
        client = socket.create_connection(("127.0.0.1", bound_port(server)), timeout=5)
        with client:
            connection = accept_with_timeout(server, 5)
            assert connection is not NO_CONNECTION
            with connection:
                assert connection.gettimeout() is None
                client.sendall(b"ping")
                assert connection.recv(4) == b"ping"
    finally:
        server.close()


def test_pending_connection_is_returned_immediately_with_infinite_wait(listener):
    client = socket.create_connection(("127.0.0.1", bound_port(listener)), timeout=5)
    with client:
        connection = accept_with_timeout(listener, 0)
        assert connection is not NO_CONNECTION
        connection.close()


@pytest.mark.parametrize("address, family", [
    (None, socket.AF_INET),
    ("", socket.AF_INET),
    ("*", socket.AF_INET),
    ("0.0.0.0", socket.AF_INET),
    ("127.0.0.1", socket.AF_INET),
    ("localhost", socket.AF_INET),
    ("::1", socket.AF_INET6),
])
def test_address_family_for(address, family):
    assert address_family_for(address) == family


def test_main_reports_timeout(capsys):
    assert listener_manager.main(["--address", "127.0.0.1", "--port", "0", "--timeout", "0.2"]) == 1
    err = capsys.readouterr().err
    assert "[listen] listening on 127.0.0.1:" in err
    assert "no connection within 0.2s" in err


def test_main_reports_bind_error(listener, capsys):
    argv = ["--address", "127.0.0.1", "--port", str(bound_port(listener)), "--timeout", "0.2"]
    assert listener_manager.main(argv) == 1
    assert "cannot bind socket" in capsys.readouterr().err
