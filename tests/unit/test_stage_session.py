"""
Unit tests for the stage session collaborator.

The reducer is a test double; only the routing contract is checked here.
"""

from unittest.mock import Mock

from hemisphere.runtime.stage import StageSession, TransitionResult, unconfigured_reducer


def counting_reducer(state, event, config, guards):
    if event == "reject":
        return TransitionResult.fail("INVALID_TRANSITION", "Cannot do that now")
    return TransitionResult.ok({**state, "events": state["events"] + [event]})


class TestStageSession:
    def test_send_without_session(self):
        reducer = Mock()
        session = StageSession(reducer)

        result = session.send_event("START")

        assert result.success is False
        assert result.error == "NO_SESSION"
        assert session.last_error == "No active session to send event to"
        reducer.assert_not_called()

    def test_successful_event_replaces_state(self):
        session = StageSession(counting_reducer)
        session.load_session({"events": []})

        result = session.send_event("START")

        assert result.success
        assert session.session == {"events": ["START"]}
        assert session.last_error is None

    def test_rejected_event_keeps_state(self):
        session = StageSession(counting_reducer)
        session.load_session({"events": []})

        result = session.send_event("reject")

        assert not result.success
        assert session.session == {"events": []}
        assert session.last_error == "Cannot do that now"

    def test_reducer_receives_config_and_guards(self):
        reducer = Mock(return_value=TransitionResult.ok("next"))
        session = StageSession(reducer, config={"encounterMinMs": 60_000}, guards={"minDuration": True})
        session.set_config(encounterMinMs=0)
        session.set_guards(minDuration=False)
        session.hydrate_session("current")

        session.send_event("ADVANCE")

        reducer.assert_called_once_with(
            "current", "ADVANCE", {"encounterMinMs": 0}, {"minDuration": False}
        )
        assert session.session == "next"

    def test_clear(self):
        session = StageSession(counting_reducer)
        session.load_session({"events": []})
        session.clear_session()

        assert session.session is None

    def test_unconfigured_reducer_rejects(self):
        session = StageSession(unconfigured_reducer)
        session.load_session({})

        assert session.send_event("START").error == "NO_REDUCER"
