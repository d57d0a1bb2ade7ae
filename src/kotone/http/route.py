from __future__ import annotations

import re
from typing import final

import attr

SNOWFLAKE = re.compile(r"^\d{16,20}$")

#: Path segments whose following ID is a "major parameter"; these get their own ratelimits.
MAJOR_PARAMETERS = frozenset({"channels", "guilds", "webhooks"})

#: Path segments that are followed by an ID and then a token, where the token is also major.
TOKEN_PARAMETERS = frozenset({"webhooks", "interactions"})


@attr.s(frozen=True, slots=True)
@final
class Route:
    """
    The ratelimit key for a request. Two requests share a ratelimit bucket (until Discord says
    otherwise, see :class:`.BucketTable`) if and only if they have the same route.
    """

    #: The upper-case HTTP method.
    method: str = attr.ib()

    #: The normalised path, with minor parameters replaced by placeholders.
    bucket_path: str = attr.ib()

    @classmethod
    def from_request(cls, method: str, path: str, api_base: str = "") -> Route:
        """
        Derives the route for a request. This is pure: the same method and path always produce the
        same route.

        :param method: The HTTP method of the request.
        :param path: The request path, optionally including the query string and API prefix.
        :param api_base: The API prefix to strip from the path, e.g. ``/api/v10``.
        """

        method = method.upper()
        path = path.split("?", 1)[0]
        if api_base and path.startswith(api_base):
            path = path[len(api_base) :]

        segments = [s for s in path.split("/") if s]
        normalised: list[str] = []

        for idx, segment in enumerate(segments):
            previous = segments[idx - 1] if idx > 0 else None
            before_previous = segments[idx - 2] if idx > 1 else None

            if previous == "reactions":
                # the emoji and everything after it (@me, user ids) share one bucket.
                normalised.append(":reaction")
                break

            if before_previous in TOKEN_PARAMETERS and SNOWFLAKE.match(previous or ""):
                # webhook and interaction tokens are part of the key.
                normalised.append(segment)
                continue

            if SNOWFLAKE.match(segment) and previous not in MAJOR_PARAMETERS:
                normalised.append(":id")
                continue

            normalised.append(segment)

        bucket_path = "/" + "/".join(normalised)

        # deleting messages has its own ratelimit, separate from the rest of the message endpoints.
        if method == "DELETE" and bucket_path.endswith("/messages/:id"):
            bucket_path += ":delete"

        return cls(method, bucket_path)

    def __str__(self) -> str:
        return f"{self.method} {self.bucket_path}"
