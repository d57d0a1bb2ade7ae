from __future__ import annotations

import attr


@attr.s(slots=True, kw_only=True)
class GatewaySession:
    """
    The resumable state of a single shard's gateway session. Owned by exactly one gateway loop.
    """

    #: The session ID issued to us in a ``READY`` packet, or None if we have to identify.
    session_id: str | None = attr.ib(default=None)

    #: The last sequence number seen on this session. Sent alongside heartbeats and resumes.
    sequence: int = attr.ib(default=0)

    #: The URL to use for resuming this session, if the gateway told us one.
    resume_url: str | None = attr.ib(default=None)

    @property
    def can_resume(self) -> bool:
        """
        If this session can be resumed instead of identifying from scratch.
        """

        return self.session_id is not None

    def advance(self, sequence: int | None) -> bool:
        """
        Records a sequence number from an inbound packet. Returns False if the sequence number is
        older than the one already seen; the stored sequence never goes backwards.
        """

        if sequence is None:
            return True

        if sequence < self.sequence:
            return False

        self.sequence = sequence
        return True

    def replace(self, *, session_id: str, resume_url: str | None, sequence: int = 0) -> None:
        """
        Replaces this session wholesale with a freshly identified one.
        """

        self.session_id = session_id
        self.resume_url = resume_url
        self.sequence = sequence

    def invalidate(self) -> None:
        """
        Clears this session, forcing the next connection to identify.
        """

        self.session_id = None
        self.resume_url = None
        self.sequence = 0
