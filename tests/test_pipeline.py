import pytest

from magnum_installer.pipeline import run_pipeline


class _Step:
    def __init__(self, step_id, log, fail=False):
        self.step_id = step_id
        self._log = log
        self._fail = fail

    def run(self, state):
        self._log.append(self.step_id)
        if self._fail:
            raise RuntimeError(f"{self.step_id} failed")
        return state


def _steps(log, fail_at=None):
    return [_Step(s, log, fail=(s == fail_at)) for s in ("a", "b", "c")]


def test_runs_in_order_and_marks_completed():
    log = []
    saved = []
    result = run_pipeline(state={}, steps=_steps(log), checkpoint=lambda s: saved.append(list(s["execution"]["completed_steps"])))
    assert log == ["a", "b", "c"]
    assert result.ran_steps == ["a", "b", "c"]
    assert saved == [["a"], ["a", "b"], ["a", "b", "c"]]
    assert result.state["execution"]["current_step"] is None


def test_skips_completed_unless_forced():
    log = []
    state = {"execution": {"completed_steps": ["a"]}}
    result = run_pipeline(state=state, steps=_steps(log))
    assert log == ["b", "c"]
    assert result.skipped_steps == ["a"]

    log.clear()
    run_pipeline(state=state, steps=_steps(log), force=True)
    assert log == ["a", "b", "c"]


def test_start_at_and_stop_after():
    log = []
    run_pipeline(state={}, steps=_steps(log), start_at="b", stop_after="b")
    assert log == ["b"]


def test_unknown_step_id():
    with pytest.raises(ValueError):
        run_pipeline(state={}, steps=_steps([]), start_at="zz")


def test_failure_stops_the_run():
    log = []
    state = {}
    with pytest.raises(RuntimeError):
        run_pipeline(state=state, steps=_steps(log, fail_at="b"))
    assert log == ["a", "b"]
    assert state["execution"]["completed_steps"] == ["a"]
    assert state["execution"]["current_step"] == "b"
