import threading

import pytest

from kubeprov.modules.errors import CollaboratorError
from kubeprov.modules.models import ClusterView, NodeStatus, PodStatus
from kubeprov.modules.verifier import ClusterVerifier
from kubeprov.tests.conftest import FakeClock


class ScriptedClient:
    """Returns one ClusterView (or raises) per poll; repeats the last one."""

    def __init__(self, *views, pods=None):
        self.views = list(views)
        self.polls = 0
        self.pods = pods or []

    def get_nodes(self):
        self.polls += 1
        view = self.views[min(self.polls, len(self.views)) - 1]
        if isinstance(view, Exception):
            raise view
        return view

    def get_system_pods(self):
        return self.pods


def view(**ready):
    return ClusterView(nodes=[NodeStatus(name=n, ready=r) for n, r in ready.items()])


@pytest.fixture
def clock():
    return FakeClock()


def make_verifier(client, clock):
    return ClusterVerifier(client, clock=clock, sleep=clock.sleep)


def test_timeout_zero_returns_immediately(clock):
    client = ScriptedClient(view(a=True))

    result = make_verifier(client, clock).await_ready(["a", "b"], timeout=0, poll_interval=1)

    assert result.timed_out
    assert result.not_ready == frozenset({"a", "b"})
    assert not result.converged
    assert client.polls == 0
    assert clock.sleeps == []


def test_no_expected_members_converges(clock):
    result = make_verifier(ScriptedClient(), clock).await_ready([], timeout=10, poll_interval=1)
    assert result.converged


def test_converges_once_all_ready(clock):
    client = ScriptedClient(view(a=True, b=False), view(a=True, b=False), view(a=True, b=True))

    result = make_verifier(client, clock).await_ready(["a", "b"], timeout=30, poll_interval=2)

    assert result.converged
    assert result.ready == frozenset({"a", "b"})
    assert client.polls == 3
    assert clock.sleeps == [2, 2]


def test_times_out_with_partial_result(clock):
    client = ScriptedClient(view(a=True, b=False))

    result = make_verifier(client, clock).await_ready(["a", "b"], timeout=5, poll_interval=2)

    assert result.timed_out
    assert result.ready == frozenset({"a"})
    assert result.not_ready == frozenset({"b"})
    assert sum(clock.sleeps) == 5
    assert clock.sleeps[-1] == 1


def test_unknown_member_is_not_ready(clock):
    result = make_verifier(ScriptedClient(view(a=True)), clock).await_ready(
        ["a", "ghost"], timeout=1, poll_interval=1
    )
    assert result.not_ready == frozenset({"ghost"})


def test_unreadable_cluster_keeps_polling(clock):
    client = ScriptedClient(CollaboratorError("connection refused"), view(a=True))

    result = make_verifier(client, clock).await_ready(["a"], timeout=10, poll_interval=1)

    assert result.converged
    assert client.polls == 2


def test_cancel_returns_partial_result():
    cancel = threading.Event()
    client = ScriptedClient(view(a=True, b=False))
    verifier = ClusterVerifier(client)
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        result = verifier.await_ready(["a", "b"], timeout=30, poll_interval=10, cancel=cancel)
    finally:
        timer.cancel()

    assert result.cancelled
    assert not result.timed_out
    assert result.ready == frozenset({"a"})
    assert result.not_ready == frozenset({"b"})


def test_already_cancelled(clock):
    cancel = threading.Event()
    cancel.set()

    result = make_verifier(ScriptedClient(view(a=False)), clock).await_ready(
        ["a"], timeout=30, poll_interval=1, cancel=cancel
    )

    assert result.cancelled
    assert clock.sleeps == []


@pytest.mark.parametrize("timeout,interval", [(None, 1), (-1, 1), (10, 0)])
def test_bounds_are_mandatory(clock, timeout, interval):
    with pytest.raises(ValueError):
        make_verifier(ScriptedClient(), clock).await_ready(["a"], timeout=timeout, poll_interval=interval)


def test_system_pods(clock):
    pods = [
        PodStatus("coredns", "kube-system", "Running", True),
        PodStatus("job", "kube-system", "Succeeded", False),
    ]
    healthy, unhealthy = make_verifier(ScriptedClient(pods=pods), clock).await_system_pods(5, 1)
    assert healthy
    assert unhealthy == []


def test_system_pods_timeout_reports_unhealthy(clock):
    pending = PodStatus("coredns", "kube-system", "Pending", False)
    healthy, unhealthy = make_verifier(ScriptedClient(pods=[pending]), clock).await_system_pods(3, 1)
    assert not healthy
    assert unhealthy == [pending]


def test_no_system_pods_is_not_healthy(clock):
    healthy, unhealthy = make_verifier(ScriptedClient(pods=[]), clock).await_system_pods(0, 1)
    assert not healthy
    assert unhealthy == []
