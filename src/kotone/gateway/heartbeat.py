from __future__ import annotations

import math
import random

import attr

#: How long to wait for a HELLO before giving up on a fresh connection. This is also what Discord
#: has used as its heartbeat interval for a very long time.
DEFAULT_HEARTBEAT_INTERVAL = 41.250


@attr.s(slots=True, kw_only=True)
class HeartbeatTimer:
    """
    Tracks when the next heartbeat is due, and whether the last one was acknowledged.

    This doesn't run anything by itself; the gateway loop uses :attr:`.deadline` as the deadline of
    a cancel scope around its receive, so heartbeating is tied to the lifetime of the loop and
    never reorders inbound packets.
    """

    #: The time, in seconds, between subsequent heartbeats.
    interval: float = attr.ib(default=DEFAULT_HEARTBEAT_INTERVAL)

    #: The absolute loop time at which the next heartbeat is due.
    deadline: float = attr.ib(default=math.inf)

    #: If True, the timer has been started by a HELLO.
    running: bool = attr.ib(default=False)

    #: The number of heartbeats sent since the timer was started.
    sent: int = attr.ib(default=0)

    #: The number of heartbeat acks received since the timer was started.
    acks: int = attr.ib(default=0)

    #: If True, a heartbeat has been sent that hasn't been acknowledged yet.
    awaiting_ack: bool = attr.ib(default=False)

    #: The time between the last heartbeat and its acknowledgement, if known.
    latency: float | None = attr.ib(default=None)

    _last_sent_at: float = attr.ib(default=0.0, init=False)

    def wait_for_hello(self, now: float, timeout: float = DEFAULT_HEARTBEAT_INTERVAL) -> None:
        """
        Arms the timer for a fresh connection, which must say HELLO before ``timeout`` passes.
        """

        self.running = False
        self.deadline = now + timeout
        self.awaiting_ack = False

    def start(self, interval: float, now: float, *, jitter: float | None = None) -> None:
        """
        Starts the timer with the interval provided in a HELLO. The first heartbeat is sent after
        ``interval * jitter`` seconds, so that many shards reconnecting at once don't all
        heartbeat at the same time.
        """

        if jitter is None:
            jitter = random.random()

        self.interval = interval
        self.deadline = now + interval * jitter
        self.running = True
        self.sent = 0
        self.acks = 0
        self.awaiting_ack = False

    @property
    def is_zombie(self) -> bool:
        """
        If the previous heartbeat was never acknowledged. Only meaningful when a heartbeat is due.
        """

        return self.running and self.awaiting_ack

    def mark_sent(self, now: float) -> None:
        """
        Records a heartbeat as sent. This doesn't move the deadline; see :meth:`.schedule_next`.
        """

        self.sent += 1
        self.awaiting_ack = True
        self._last_sent_at = now

    def schedule_next(self, now: float) -> None:
        """
        Moves the deadline on by one interval. The schedule is absolute, so a late heartbeat
        doesn't push every future one back, unless we've fallen an entire interval behind.
        """

        self.deadline += self.interval
        if self.deadline <= now:
            self.deadline = now + self.interval

    def acknowledge(self, now: float) -> None:
        """
        Records a heartbeat acknowledgement.
        """

        self.acks += 1
        self.awaiting_ack = False
        self.latency = now - self._last_sent_at

    def stop(self) -> None:
        """
        Stops the timer. No heartbeat will be due until it is started again.
        """

        self.running = False
        self.deadline = math.inf
        self.awaiting_ack = False
