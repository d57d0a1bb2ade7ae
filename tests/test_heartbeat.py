import math

from kotone.gateway.heartbeat import HeartbeatTimer
from kotone.gateway.session import GatewaySession


def test_first_heartbeat_is_jittered():
    timer = HeartbeatTimer()
    timer.start(40.0, 100.0, jitter=0.25)

    assert timer.running
    assert timer.deadline == 110.0

    timer.start(40.0, 100.0)
    assert 100.0 <= timer.deadline <= 140.0


def test_schedule_is_absolute():
    timer = HeartbeatTimer()
    timer.start(10.0, 0.0, jitter=1.0)

    # sent a little late; the next one is still due on the original schedule.
    timer.mark_sent(10.5)
    timer.schedule_next(10.5)
    assert timer.deadline == 20.0

    # fell more than a whole interval behind, so the schedule starts over.
    timer.mark_sent(35.0)
    timer.schedule_next(35.0)
    assert timer.deadline == 45.0


def test_missed_ack_is_a_zombie():
    timer = HeartbeatTimer()
    timer.start(10.0, 0.0, jitter=1.0)
    assert not timer.is_zombie

    timer.mark_sent(10.0)
    assert timer.is_zombie

    timer.acknowledge(10.25)
    assert not timer.is_zombie
    assert timer.latency == 0.25
    assert (timer.sent, timer.acks) == (1, 1)


def test_stopping_clears_the_deadline():
    timer = HeartbeatTimer()
    timer.start(10.0, 0.0)
    timer.mark_sent(1.0)
    timer.stop()

    assert not timer.running
    assert not timer.is_zombie
    assert timer.deadline == math.inf


def test_waiting_for_hello():
    timer = HeartbeatTimer()
    timer.wait_for_hello(5.0, timeout=20.0)

    assert not timer.running
    assert timer.deadline == 25.0


def test_session_sequence_never_goes_backwards():
    session = GatewaySession()

    assert session.advance(5)
    assert session.advance(None)
    assert not session.advance(3)
    assert session.sequence == 5


def test_session_replace_and_invalidate():
    session = GatewaySession()
    assert not session.can_resume

    session.replace(session_id="abc", resume_url="wss://resume.test", sequence=1)
    assert session.can_resume
    assert session.resume_url == "wss://resume.test"

    session.invalidate()
    assert not session.can_resume
    assert session.sequence == 0
    assert session.resume_url is None
