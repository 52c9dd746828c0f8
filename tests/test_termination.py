"""TerminationCoordinator unit tests.

Test coverage:
- Finish fires only when stdout, stderr and exit are all recorded
- Every arrival order of the three signals
- Exactly-once firing under repeated and concurrent updates
- Release hook ordering and callback error isolation
"""

from __future__ import annotations

import itertools
import threading

import pytest

from task_wrapper.runtime.termination import (
    ProcessState,
    TerminationCoordinator,
    TerminationState,
)


class Recorder:
    """Collects coordinator callbacks."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, object]] = []

    def finished(self, exit_code: int) -> None:
        self.calls.append(("finished", exit_code))

    def release(self) -> None:
        self.calls.append(("release", None))


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def coordinator(recorder: Recorder) -> TerminationCoordinator:
    return TerminationCoordinator(on_finished=recorder.finished, on_release=recorder.release)


def _signal(coordinator: TerminationCoordinator, name: str, exit_code: int = 0) -> bool:
    if name == "exit":
        return coordinator.mark_process_exited(exit_code)
    return coordinator.mark_stream_exhausted(name)


# =============================================================================
# Conjunction
# =============================================================================


class TestConjunction:
    """Finish requires all three signals."""

    @pytest.mark.parametrize(
        "order", list(itertools.permutations(["stdout", "stderr", "exit"]))
    )
    def test_every_arrival_order(self, order, recorder: Recorder, coordinator: TerminationCoordinator):
        """Finish happens on the last signal, whatever the order."""
        coordinator.mark_running()

        for name in order[:-1]:
            assert _signal(coordinator, name, exit_code=3) is False
            assert recorder.calls == []
            assert coordinator.state is ProcessState.RUNNING

        assert _signal(coordinator, order[-1], exit_code=3) is True
        assert recorder.calls == [("finished", 3), ("release", None)]
        assert coordinator.state is ProcessState.FINISHED

    def test_exit_alone_does_not_finish(self, recorder: Recorder, coordinator: TerminationCoordinator):
        coordinator.mark_running()
        coordinator.mark_process_exited(0)
        assert recorder.calls == []

    def test_streams_alone_do_not_finish(self, recorder: Recorder, coordinator: TerminationCoordinator):
        coordinator.mark_running()
        coordinator.mark_stream_exhausted("stdout")
        coordinator.mark_stream_exhausted("stderr")
        assert recorder.calls == []
        assert coordinator.flags.process_exited is False

    def test_signals_before_running_wait_for_running(
        self, recorder: Recorder, coordinator: TerminationCoordinator
    ):
        """Flags recorded before RUNNING are evaluated on entering RUNNING."""
        coordinator.mark_stream_exhausted("stdout")
        coordinator.mark_stream_exhausted("stderr")
        coordinator.mark_process_exited(7)
        assert recorder.calls == []
        assert coordinator.state is ProcessState.NOT_STARTED

        assert coordinator.mark_running() is True
        assert recorder.calls == [("finished", 7), ("release", None)]


# =============================================================================
# Exactly once
# =============================================================================


class TestExactlyOnce:
    """The finished callback fires once and flags never reset."""

    def test_repeated_signals_ignored(self, recorder: Recorder, coordinator: TerminationCoordinator):
        coordinator.mark_running()
        for name in ("stdout", "stderr", "exit", "stdout", "stderr", "exit"):
            _signal(coordinator, name)

        assert recorder.calls.count(("finished", 0)) == 1
        assert recorder.calls.count(("release", None)) == 1

    def test_duplicate_exit_keeps_first_code(self, coordinator: TerminationCoordinator):
        coordinator.mark_running()
        coordinator.mark_process_exited(1)
        coordinator.mark_process_exited(2)
        assert coordinator.exit_code == 1

    def test_concurrent_signals(self):
        """Many threads racing on the flags still fire exactly once."""
        for _ in range(50):
            calls: list[int] = []
            coordinator = TerminationCoordinator(on_finished=calls.append)
            coordinator.mark_running()
            barrier = threading.Barrier(6)

            def worker(name: str) -> None:
                barrier.wait()
                _signal(coordinator, name, exit_code=9)

            threads = [
                threading.Thread(target=worker, args=(name,))
                for name in ("stdout", "stderr", "exit") * 2
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

            assert calls == [9]
            assert coordinator.state is ProcessState.FINISHED

    def test_mark_running_twice_rejected(self, coordinator: TerminationCoordinator):
        coordinator.mark_running()
        with pytest.raises(RuntimeError):
            coordinator.mark_running()


# =============================================================================
# Callbacks
# =============================================================================


class TestCallbacks:
    """Callback failures do not break the state machine."""

    def test_finished_callback_error_still_releases(self, recorder: Recorder):
        def boom(exit_code: int) -> None:
            raise RuntimeError("controller failure")

        coordinator = TerminationCoordinator(on_finished=boom, on_release=recorder.release)
        coordinator.mark_running()
        coordinator.mark_stream_exhausted("stdout")
        coordinator.mark_stream_exhausted("stderr")
        assert coordinator.mark_process_exited(0) is True

        assert recorder.calls == [("release", None)]
        assert coordinator.state is ProcessState.FINISHED

    def test_unknown_stream_rejected(self, coordinator: TerminationCoordinator):
        with pytest.raises(ValueError):
            coordinator.mark_stream_exhausted("stdin")


# =============================================================================
# TerminationState
# =============================================================================


class TestTerminationState:
    """Test the flag snapshot."""

    def test_defaults(self):
        state = TerminationState()
        assert state.complete is False
        assert state.exit_code is None

    def test_snapshot_is_a_copy(self, coordinator: TerminationCoordinator):
        snapshot = coordinator.flags
        coordinator.mark_stream_exhausted("stdout")
        assert snapshot.stdout_exhausted is False
        assert coordinator.flags.stdout_exhausted is True
