import logging
import os
import time

import paramiko
import pytest

import sshfan.config
from sshfan.config import Settings


class FakeChannel:
    """Scripted stand-in for a paramiko channel.

    Events are released into the channel buffers on a timer so the drive
    loop sees them arrive over several polls. The file descriptor is a real
    pipe that is never written, which keeps ``select`` usable.
    """

    def __init__(self, network, client):
        self.network = network
        self.client = client
        self.command = None
        self._events = []
        self._out = bytearray()
        self._err = bytearray()
        self._remote_closed = False
        self._local_closed = False
        self._exit_ready = False
        self._eof = False
        self._rfd, self._wfd = os.pipe()
        if network.high_fd is not None:
            os.dup2(self._rfd, network.high_fd)
            os.close(self._rfd)
            self._rfd = network.high_fd
            network.high_fd += 1

    def exec_command(self, command):
        self.command = command
        start = time.monotonic()
        events = self.network.script(self.client.hostname, command)
        self._events = [(start + self.network.step * i, kind, data) for i, (kind, data) in enumerate(events, 1)]

    def _release(self):
        now = time.monotonic()
        while self._events and self._events[0][0] <= now:
            _, kind, data = self._events.pop(0)
            if kind == "out":
                self._out += data
            elif kind == "err":
                self._err += data
            elif kind == "drop":
                self.client.transport.active = False
            else:
                self._eof = True
                self._exit_ready = True
                self._remote_closed = True

    def fileno(self):
        return self._rfd

    def recv_ready(self):
        self._release()
        return bool(self._out)

    def recv(self, nbytes):
        data = bytes(self._out[:nbytes])
        del self._out[:nbytes]
        return data

    def recv_stderr_ready(self):
        self._release()
        return bool(self._err)

    def recv_stderr(self, nbytes):
        data = bytes(self._err[:nbytes])
        del self._err[:nbytes]
        return data

    def exit_status_ready(self):
        self._release()
        return self._exit_ready

    @property
    def eof_received(self):
        self._release()
        return self._eof

    @property
    def closed(self):
        self._release()
        return self._remote_closed or self._local_closed

    def close(self):
        if self._local_closed:
            return
        self._local_closed = True
        os.close(self._rfd)
        os.close(self._wfd)


class FakeTransport:
    def __init__(self, network, client):
        self.network = network
        self.client = client
        self.active = True

    def is_active(self):
        return self.active

    def open_session(self, timeout=None):
        if self.client.hostname in self.network.refuse:
            raise paramiko.ChannelException(1, "Administratively prohibited")
        if self.client.hostname in self.network.channel_failures:
            raise self.network.channel_failures[self.client.hostname]
        self.client.channel = FakeChannel(self.network, self.client)
        return self.client.channel


class FakeClient:
    def __init__(self, network):
        self.network = network
        self.hostname = None
        self.options = {}
        self.policy = None
        self.system_host_keys = False
        self.transport = None
        self.channel = None
        self.closed = False

    def set_missing_host_key_policy(self, policy):
        self.policy = policy

    def load_system_host_keys(self):
        self.system_host_keys = True

    def connect(self, hostname, **options):
        self.hostname = hostname
        self.options = options
        self.network.clients.append(self)
        if hostname in self.network.failures:
            raise self.network.failures[hostname]
        self.transport = FakeTransport(self.network, self)

    def get_transport(self):
        return self.transport

    def close(self):
        self.closed = True
        if self.transport is not None:
            self.transport.active = False
        if self.channel is not None:
            self.channel.close()


class FakeNetwork:
    """Scripted replacement for ``paramiko.SSHClient``.

    ``scripts`` maps ``(hostname, command)`` or ``command`` to a list of
    ``(kind, data)`` events where kind is ``out``, ``err``, ``drop`` or
    ``close``. Unscripted commands close without output. ``failures`` and
    ``channel_failures`` map a hostname to the exception raised by connect
    or by opening the channel. When ``high_fd`` is set, channel descriptors
    are moved to that number and upwards.
    """

    def __init__(self):
        self.scripts = {}
        self.failures = {}
        self.channel_failures = {}
        self.refuse = set()
        self.clients = []
        self.step = 0.005
        self.high_fd = None

    def script(self, hostname, command):
        events = self.scripts.get((hostname, command), self.scripts.get(command))
        if events is None:
            events = [("close", None)]
        return events

    def client_for(self, hostname):
        return [client for client in self.clients if client.hostname == hostname]


@pytest.fixture()
def network(monkeypatch):
    fake = FakeNetwork()
    monkeypatch.setattr(paramiko, "SSHClient", lambda: FakeClient(fake))
    return fake


@pytest.fixture()
def raised_fd_limit():
    """Allow descriptors above 1024 for the duration of a test."""
    resource = pytest.importorskip("resource")
    wanted = 2048
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if hard != resource.RLIM_INFINITY and hard < wanted:
        pytest.skip("descriptor limit too low")
    if soft == resource.RLIM_INFINITY or soft >= wanted:
        yield
        return
    resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))
    yield
    resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))


@pytest.fixture(autouse=True)
def no_user_settings(monkeypatch, tmp_path):
    monkeypatch.setattr(sshfan.config, "DEFAULT_SETTINGS_PATH", tmp_path / "absent.yaml")


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logger = logging.getLogger("sshfan")
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture()
def ssh_config(tmp_path):
    path = tmp_path / "ssh_config"
    path.write_text(
        "Host alpha\n"
        "    User u1\n"
        "Host beta\n"
        "    User u2\n"
        "Host group_1\n"
        "    User deploy\n"
        "Host group_2\n"
        "    User deploy\n"
    )
    return path


@pytest.fixture()
def settings(ssh_config):
    return Settings(ssh_config=ssh_config, poll_interval=0.01)


class Recorder:
    def __init__(self):
        self.output = []
        self.errors = []
        self.statuses = []

    def on_output(self, host, text):
        self.output.append((host, text))

    def on_error(self, host, text):
        self.errors.append((host, text))

    def on_status(self, host, status):
        self.statuses.append((host, status))

    def lines_for(self, host):
        return [text for h, text in self.output if h == host]


@pytest.fixture()
def recorder():
    return Recorder()
