"""Tests for the SimulationEngine."""

import pytest

from forksim.engine import SimulationEngine
from forksim.hierarchy import tree_pids
from forksim.models import EventKind, ProcessStatus, RunStatus


def messages(result):
    return [event.message for event in result.events]


@pytest.fixture
def engine():
    return SimulationEngine()


class TestLifecycle:
    """Initialization, reset and completion."""

    def test_new_engine_is_idle(self, engine):
        assert engine.status is RunStatus.IDLE
        assert engine.processes == []
        assert engine.source_lines == ()

    def test_tick_when_idle_does_nothing(self, engine):
        result = engine.tick()

        assert result.complete
        assert result.events == ()
        assert engine.status is RunStatus.IDLE

    def test_initialize_creates_root(self, engine):
        engine.initialize(["a;", "b;"])

        (root,) = engine.processes
        assert root.pid == 1
        assert root.ppid == 0
        assert root.program_counter == 0
        assert root.status is ProcessStatus.RUNNING
        assert root.variables == {}
        assert engine.status is RunStatus.READY
        assert engine.source_lines == ("a;", "b;")

    def test_initialize_copies_source(self, engine):
        lines = ["a;"]
        engine.initialize(lines)
        lines.append("b;")

        assert engine.source_lines == ("a;",)

    def test_initialize_twice_restarts_pids(self, engine):
        engine.initialize(["fork();"])
        engine.tick()
        engine.initialize(["x;"])

        assert [p.pid for p in engine.processes] == [1]
        assert engine.tick_count == 0

    def test_reset_is_idempotent(self, engine):
        engine.initialize(["fork();", "x;"])
        engine.tick()

        engine.reset()
        once = (engine.status, engine.processes, engine.source_lines, engine.tick_count, engine.transcript)
        engine.reset()
        twice = (engine.status, engine.processes, engine.source_lines, engine.tick_count, engine.transcript)

        assert once == twice == (RunStatus.IDLE, [], (), 0, "")

    def test_first_tick_sets_running(self, engine):
        engine.initialize(["a;", "b;"])
        result = engine.tick()

        assert result.status is RunStatus.RUNNING
        assert not result.complete

    def test_completion_emits_one_event(self, engine):
        engine.initialize(["a;"])
        engine.tick()
        engine.tick()
        result = engine.tick()

        assert result.complete
        assert engine.status is RunStatus.FINISHED
        assert [e.kind for e in result.events] == [EventKind.COMPLETE]

        again = engine.tick()
        assert again.complete
        assert again.events == ()

    def test_run_yields_until_complete(self, engine):
        engine.initialize(["a;", "b;"])
        results = list(engine.run())

        assert len(results) == 4
        assert results[-1].complete
        assert not any(r.complete for r in results[:-1])

    def test_run_respects_max_ticks(self, engine):
        engine.initialize(["a;", "b;", "c;"])
        results = list(engine.run(max_ticks=2))

        assert len(results) == 2
        assert not engine.is_complete


class TestTermination:
    """Tick counts until the sole process finishes."""

    @pytest.mark.parametrize("count", [1, 3, 6])
    def test_noop_program_takes_n_plus_one_ticks(self, engine, count):
        engine.initialize([f"int x{i} = {i};" for i in range(count)])

        for _ in range(count):
            engine.tick()
            assert engine.processes[0].is_running

        result = engine.tick()
        assert not engine.processes[0].is_running
        assert messages(result) == ["Process 1 finished (reached end of code)."]

    def test_terminating_last_line_takes_n_ticks(self, engine):
        engine.initialize(["int a = 1;", "int b = 2;", "return 0;"])

        engine.tick()
        engine.tick()
        result = engine.tick()

        root = engine.processes[0]
        assert root.status is ProcessStatus.FINISHED
        assert root.program_counter == 2  # frozen on the terminating line
        assert messages(result) == ["Process 1 finished (return/exit scope)."]

    def test_empty_program(self, engine):
        engine.initialize([])

        result = engine.tick()
        assert messages(result) == ["Process 1 finished (reached end of code)."]
        assert result.highlights == ((0, 1),)

        assert engine.tick().complete

    def test_program_counter_never_decreases(self, engine):
        engine.initialize(["fork();", "fork();", 'printf("x\\n");', "return 0;", "}"])
        last_seen: dict[int, int] = {}

        for _ in engine.run():
            for process in engine.processes:
                assert process.program_counter >= last_seen.get(process.pid, 0)
                last_seen[process.pid] = process.program_counter

    def test_stall_guard_completes_run(self, engine, monkeypatch):
        engine.initialize(["a;"])
        monkeypatch.setattr(engine, "_step", lambda process, events: None)

        result = engine.tick()

        assert result.complete
        assert engine.status is RunStatus.FINISHED
        assert [e.kind for e in result.events] == [EventKind.COMPLETE]


class TestScenarios:
    """End-to-end example runs."""

    def test_single_printf(self, engine):
        engine.initialize(['printf("hi\\n");'])

        first = engine.tick()
        assert messages(first) == ["[PID:1] hi"]

        second = engine.tick()
        assert messages(second) == ["Process 1 finished (reached end of code)."]
        assert second.events[0].kind is EventKind.END_OF_CODE

    def test_fork_then_print_fork_result(self, engine):
        engine.initialize(["fork();", 'printf("child=%d\\n", child_pid);'])

        first = engine.tick()
        assert messages(first) == ["Process 1 called fork(). Created child Process 2."]
        child = engine.get_process(2)
        assert child.ppid == 1
        assert child.program_counter == 1

        second = engine.tick()
        assert messages(second) == ["[PID:1] child=2", "[PID:2] child=0"]
        assert second.highlights == ((1, 1), (1, 2))

    def test_child_waits_for_next_tick(self, engine):
        engine.initialize(["fork();", "a;", "b;"])

        result = engine.tick()

        assert [pid for _, pid in result.highlights] == [1]
        assert engine.get_process(1).program_counter == 1
        assert engine.get_process(2).program_counter == 1

    def test_two_root_forks_tree(self):
        published = []
        engine = SimulationEngine(tree_sink=published.append)
        engine.initialize(["fork();", "fork();", 'printf("done\\n");'])

        engine.tick()
        engine.tick()

        # Tree published right after the root's second fork, before PID 2 runs
        tree = published[1]
        assert tree.pid == 1
        assert sorted(child.pid for child in tree.children) == [2, 3]
        assert all(child.children == [] for child in tree.children)

    def test_events_are_logged_in_transcript(self, engine):
        engine.initialize(["fork();"])
        list(engine.run())

        assert engine.transcript == (
            "Process 1 called fork(). Created child Process 2.\n"
            "Process 1 finished (reached end of code).\n"
            "Process 2 finished (reached end of code).\n"
            "Simulation finished.\n"
        )


class TestForkSemantics:
    """Fork bookkeeping."""

    def test_pids_are_monotonic_and_unique(self, engine):
        engine.initialize(["fork();", "fork();", "fork();"])
        list(engine.run())

        pids = [p.pid for p in engine.processes]
        assert pids == list(range(1, 9))

    def test_child_starts_after_fork_line(self, engine):
        engine.initialize(["a;", "b;", "fork();", "c;"])
        for _ in range(3):
            engine.tick()

        assert engine.get_process(2).program_counter == 3
        assert engine.get_process(1).program_counter == 3

    def test_fork_return_values(self, engine):
        engine.initialize(["fork();", "x;"])
        engine.tick()

        assert engine.get_process(1).last_fork_return == 2
        assert engine.get_process(2).last_fork_return == 0

    def test_variables_are_independent(self, engine):
        engine.initialize(["fork();", "x;"])
        engine.get_process(1).variables["count"] = [1]
        engine.tick()

        engine.get_process(2).variables["count"].append(2)
        engine.get_process(2).variables["new"] = True

        assert engine.get_process(1).variables == {"count": [1]}

    def test_single_root(self, engine):
        engine.initialize(["fork();", "fork();", "return 0;"])
        list(engine.run())

        assert [p.pid for p in engine.processes if p.ppid == 0] == [1]

    def test_many_forks(self, engine):
        engine.initialize(["fork();"] * 10)
        results = list(engine.run())

        assert len(engine.processes) == 1024
        assert sorted(tree_pids(results[-1].tree)) == list(range(1, 1025))
        assert all(not p.is_running for p in engine.processes)


class TestSinks:
    """Optional collaborators."""

    def test_highlight_sink_receives_turns(self):
        seen = []
        engine = SimulationEngine(highlight_sink=lambda line, pid: seen.append((line, pid)))
        engine.initialize(["fork();", "x;"])

        engine.tick()
        engine.tick()

        assert seen == [(0, 1), (1, 1), (1, 2)]

    def test_failing_highlight_sink_is_ignored(self):
        def broken(line, pid):
            raise LookupError("no such line element")

        engine = SimulationEngine(highlight_sink=broken)
        engine.initialize(['printf("ok\\n");'])

        assert messages(engine.tick()) == ["[PID:1] ok"]

    def test_failing_tree_sink_is_ignored(self):
        def broken(tree):
            raise RuntimeError("renderer gone")

        engine = SimulationEngine(tree_sink=broken)
        engine.initialize(["fork();", "x;"])

        result = engine.tick()

        assert messages(result) == ["Process 1 called fork(). Created child Process 2."]
        assert engine.get_process(1).program_counter == 1
        assert [p.pid for p in engine.processes] == [1, 2]

        list(engine.run())
        assert engine.status is RunStatus.FINISHED

    def test_tree_sink_on_fork_finish_and_completion(self):
        published = []
        engine = SimulationEngine(tree_sink=published.append)
        engine.initialize(["fork();"])

        list(engine.run())

        # fork, two end-of-code finishes, completion
        assert len(published) == 4
        assert tree_pids(published[-1]) == [1, 2]
        assert published[-1].children[0].status is ProcessStatus.FINISHED
