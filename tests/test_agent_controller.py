import threading

import pytest

from phoneagent.agent_controller import AgentController, AgentState
from phoneagent.ai_client import AIClientError
from phoneagent.config import LoopSettings
from phoneagent.schema import Action, ActionType, AnalyzeResult

from conftest import FakeAIClient, FakeDevice, FakeShell

COMPLETE = AnalyzeResult(Action.complete("all done"))


def fast(**overrides) -> LoopSettings:
    values = dict(action_delay=0, screenshot_retry_delay=0, ai_retry_delay=0)
    values.update(overrides)
    return LoopSettings(**values)


@pytest.fixture
def make_agent(bus, fake_device):
    def build(ai, settings=None, shell=None, use_root=True, device=None):
        return AgentController(device or fake_device, ai, bus, settings or fast(), shell, use_root)
    return build


def finish(agent, bus):
    assert agent.wait(timeout=10)
    assert bus.drain(timeout=5)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------
def test_task_runs_until_complete(make_agent, bus, recorder, fake_device):
    ai = FakeAIClient(results=[AnalyzeResult(Action.tap(5, 6)), COMPLETE])
    agent = make_agent(ai)

    assert agent.start_task("  open settings ")
    finish(agent, bus)

    assert recorder.kinds() == [
        "task_started",
        "step_started", "screenshot", "action_parsed",
        "step_started", "screenshot", "action_parsed",
        "task_completed", "task_finished",
    ]
    assert fake_device.calls == [("tap", 5, 6)]
    assert ai.calls[0]["instruction"] == "open settings"
    assert ai.calls[0]["size"] == (1080, 2400)
    assert ai.calls[1]["history"] == ["Tap (5, 6): success"]
    assert recorder.of_kind("task_completed")[0].message == "all done"
    finished = recorder.of_kind("task_finished")[0]
    assert (finished.message, finished.step) == ("completed", 2)
    assert agent.state == AgentState.IDLE
    assert agent.action_log() == ["Tap (5, 6): success", "Task complete: all done: success"]


def test_thought_is_published(make_agent, bus, recorder):
    ai = FakeAIClient(results=[AnalyzeResult(Action.complete(), thought="nothing left to do")])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)
    assert [e.message for e in recorder.of_kind("thought")] == ["nothing left to do"]


def test_step_cap_stops_the_loop(make_agent, bus, recorder):
    ai = FakeAIClient()   # taps forever
    agent = make_agent(ai)
    agent.start_task("never ends")
    finish(agent, bus)

    assert len(ai.calls) == 50
    warnings = [e.message for e in recorder.of_kind("warning")]
    assert "Max steps reached (50) without completing the task" in warnings
    finished = recorder.of_kind("task_finished")[0]
    assert (finished.message, finished.step) == ("max_steps", 50)


def test_history_sent_to_model_is_bounded(make_agent, bus):
    ai = FakeAIClient()
    agent = make_agent(ai, fast(max_steps=15, ai_history_window=4))
    agent.start_task("x")
    finish(agent, bus)
    assert len(ai.calls[-1]["history"]) == 4


# ---------------------------------------------------------------------------
# Single active task
# ---------------------------------------------------------------------------
def test_second_task_is_rejected_while_running(make_agent, bus, recorder):
    ai = FakeAIClient(results=[COMPLETE])
    ai.gate = threading.Event()
    agent = make_agent(ai)

    assert agent.start_task("first")
    assert ai.entered.wait(5)
    assert not agent.start_task("second")
    ai.gate.set()
    finish(agent, bus)

    assert "A task is already running" in [e.message for e in recorder.of_kind("warning")]
    assert len(recorder.of_kind("task_started")) == 1
    assert len(ai.calls) == 1
    # a new task is accepted once the first one is done
    ai.gate = None
    ai.results = [COMPLETE]
    assert agent.start_task("third")
    finish(agent, bus)


def test_not_configured_refuses_to_start(make_agent, bus, recorder):
    agent = make_agent(FakeAIClient(configured=False))
    assert not agent.start_task("anything")
    bus.drain(timeout=5)
    assert recorder.kinds() == ["error"]
    assert agent.state == AgentState.IDLE


# ---------------------------------------------------------------------------
# Failures inside a step
# ---------------------------------------------------------------------------
def test_screenshot_failure_uses_a_step(make_agent, bus, recorder, fake_device):
    fake_device.screenshots = [None]
    ai = FakeAIClient(results=[COMPLETE])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)

    assert [e.message for e in recorder.of_kind("error")] == ["Screenshot failed"]
    assert len(ai.calls) == 1
    assert recorder.of_kind("task_finished")[0].step == 2


def test_screenshots_that_never_work_hit_the_cap(make_agent, bus, recorder, fake_device):
    fake_device.screenshots = [None] * 10
    ai = FakeAIClient()
    agent = make_agent(ai, fast(max_steps=5))
    agent.start_task("x")
    finish(agent, bus)

    assert len(recorder.of_kind("error")) == 5
    assert ai.calls == []
    assert recorder.of_kind("task_finished")[0].message == "max_steps"


def test_ai_failure_is_retried_on_next_step(make_agent, bus, recorder):
    ai = FakeAIClient(results=[AIClientError("boom"), COMPLETE])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)

    assert [e.message for e in recorder.of_kind("error")] == ["AI request failed: boom"]
    assert recorder.of_kind("task_finished")[0].message == "completed"


def test_error_action_does_not_end_the_task(make_agent, bus, recorder):
    ai = FakeAIClient(results=[AnalyzeResult(Action.error("could not parse action type")), COMPLETE])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)

    assert [e.message for e in recorder.of_kind("error")] == ["could not parse action type"]
    assert agent.action_log()[0] == "Error: could not parse action type: failed"
    assert recorder.of_kind("task_finished")[0].message == "completed"


def test_unexpected_exception_ends_the_run(make_agent, bus, recorder):
    class BrokenDevice(FakeDevice):
        def screen_size(self):
            raise RuntimeError("wm size failed")

    agent = make_agent(FakeAIClient(), device=BrokenDevice())
    agent.start_task("x")
    finish(agent, bus)

    assert [e.message for e in recorder.of_kind("error")] == ["Execution error: wm size failed"]
    assert recorder.of_kind("task_finished")[0].message == "error"
    assert agent.state == AgentState.IDLE


# ---------------------------------------------------------------------------
# Pause / cancel
# ---------------------------------------------------------------------------
def test_take_over_pauses_the_agent(make_agent, bus, recorder, fake_device):
    ai = FakeAIClient(results=[AnalyzeResult(Action.take_over("log in please"))])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)

    assert agent.state == AgentState.PAUSED
    assert len(ai.calls) == 1
    assert fake_device.calls == []
    assert recorder.of_kind("task_finished")[0].message == "paused"
    assert agent.current_task == "x"

    agent.stop_task()
    assert agent.state == AgentState.IDLE
    assert agent.current_task is None
    assert agent.action_log() == ["User takeover required: log in please: failed"]


def test_interact_pauses_too(make_agent, bus):
    agent = make_agent(FakeAIClient(results=[AnalyzeResult(Action.interact())]))
    agent.start_task("x")
    finish(agent, bus)
    assert agent.state == AgentState.PAUSED


def test_stop_prevents_pending_action(make_agent, bus, recorder, fake_device):
    ai = FakeAIClient(results=[AnalyzeResult(Action.tap(1, 2))])
    ai.gate = threading.Event()
    agent = make_agent(ai)

    agent.start_task("x")
    assert ai.entered.wait(5)
    agent.stop_task()
    assert agent.state == AgentState.IDLE
    ai.gate.set()
    finish(agent, bus)

    assert fake_device.calls == []
    logs = [e.message for e in recorder.of_kind("log")]
    assert "Task stopped" in logs and "Task cancelled" in logs
    assert recorder.of_kind("task_finished")[0].message == "stopped"
    assert agent.state == AgentState.IDLE


def test_restart_after_stop_reports_only_the_new_run(make_agent, bus, recorder):
    ai = FakeAIClient(default=COMPLETE)
    ai.gate = threading.Event()
    agent = make_agent(ai)

    agent.start_task("A")
    assert ai.entered.wait(5)
    first = agent._thread
    agent.stop_task()
    assert agent.start_task("B")
    ai.gate.set()
    first.join(5)
    finish(agent, bus)

    lifecycle = [(e.kind, e.message) for e in recorder.events
                 if e.kind in ("task_started", "task_finished")]
    assert lifecycle == [("task_started", "A"), ("task_started", "B"),
                         ("task_finished", "completed")]
    assert agent.state == AgentState.IDLE


def test_stop_when_idle_is_a_no_op(make_agent, bus, recorder):
    agent = make_agent(FakeAIClient())
    agent.stop_task()
    bus.drain(timeout=5)
    assert recorder.kinds() == []


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------
def test_every_action_type_has_a_handler(make_agent):
    agent = make_agent(FakeAIClient())
    assert set(agent._handlers) == set(ActionType)


@pytest.mark.parametrize("action,call", [
    (Action.tap(1, 2), ("tap", 1, 2)),
    (Action.double_tap(1, 2), ("double_tap", 1, 2)),
    (Action.long_press(1, 2, 800), ("long_press", 1, 2, 800)),
    (Action.swipe(1, 2, 3, 4, 300), ("swipe", 1, 2, 3, 4, 300)),
    (Action.swipe_directional("down", 400, 200), ("swipe_direction", "down", 400, 200)),
    (Action.input_text("hi"), ("input_text", "hi")),
    (Action.back(), ("press_key", 4)),
    (Action.screenshot(), ("take_screenshot",)),
    (Action.launch_app("Maps"), ("launch_app", "Maps")),
])
def test_device_actions(make_agent, fake_device, action, call):
    agent = make_agent(FakeAIClient())
    assert agent.execute_one_action(action)
    assert fake_device.calls == [call]


@pytest.mark.parametrize("action,ok", [
    (Action.wait(0), True),
    (Action.think("hmm"), True),
    (Action.complete(), True),
    (Action.error("bad"), False),
    (Action.unknown("fly"), False),
    (Action.take_over(), False),
    (Action.interact(), False),
    (Action.note("seen"), True),
    (Action.call_api("sum up"), True),
])
def test_non_device_actions(make_agent, fake_device, action, ok):
    agent = make_agent(FakeAIClient())
    assert agent.execute_one_action(action) is ok
    assert fake_device.calls == []
    # manual pause actions never change agent state
    assert agent.state == AgentState.IDLE


def test_unknown_action_warns(make_agent, bus, recorder):
    agent = make_agent(FakeAIClient())
    agent.execute_one_action(Action.unknown("fly"))
    bus.drain(timeout=5)
    assert [e.message for e in recorder.of_kind("warning")] == ["Unknown action: fly"]


def test_failed_launch_warns(make_agent, bus, recorder, fake_device):
    fake_device.launch_ok = False
    agent = make_agent(FakeAIClient())
    assert not agent.execute_one_action(Action.launch_app("Nope"))
    bus.drain(timeout=5)
    assert [e.message for e in recorder.of_kind("warning")] == ["Could not launch app: Nope"]


def test_device_error_becomes_failed_action(make_agent, bus, recorder):
    class FlakyDevice(FakeDevice):
        def tap(self, x, y):
            raise RuntimeError("input died")

    agent = make_agent(FakeAIClient(), device=FlakyDevice())
    assert not agent.execute_one_action(Action.tap(1, 1))
    bus.drain(timeout=5)
    assert [e.message for e in recorder.of_kind("error")] == ["Tap (1, 1) failed: input died"]


def test_note_is_recorded_in_history(make_agent, bus):
    ai = FakeAIClient(results=[AnalyzeResult(Action.note("total 42")), COMPLETE])
    agent = make_agent(ai)
    agent.start_task("x")
    finish(agent, bus)
    assert agent.action_log()[:2] == ["Note: total 42", "Note page: total 42: success"]


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------
def test_initialize_requires_root(make_agent, bus, recorder):
    agent = make_agent(FakeAIClient(), shell=FakeShell(root=False))
    assert not agent.initialize()
    assert agent.state == AgentState.ERROR
    bus.drain(timeout=5)
    assert recorder.kinds() == ["error"]


def test_initialize_with_root(make_agent):
    agent = make_agent(FakeAIClient(), shell=FakeShell(root=True))
    assert agent.initialize()
    assert agent.state == AgentState.IDLE


def test_initialize_without_root_when_not_required(make_agent):
    agent = make_agent(FakeAIClient(), shell=FakeShell(root=False), use_root=False)
    assert agent.initialize()
