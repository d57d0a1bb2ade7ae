import pytest
from kotone.http.route import Route

CHANNEL = "123456789012345678"
OTHER_CHANNEL = "876543210987654321"
MESSAGE = "223456789012345678"


@pytest.mark.parametrize(
    "method,path,expected",
    [
        ("get", f"/channels/{CHANNEL}/messages", f"GET /channels/{CHANNEL}/messages"),
        (
            "GET",
            f"/channels/{CHANNEL}/messages/{MESSAGE}",
            f"GET /channels/{CHANNEL}/messages/:id",
        ),
        (
            "DELETE",
            f"/channels/{CHANNEL}/messages/{MESSAGE}",
            f"DELETE /channels/{CHANNEL}/messages/:id:delete",
        ),
        (
            "PUT",
            f"/channels/{CHANNEL}/messages/{MESSAGE}/reactions/%F0%9F%91%8D/@me",
            f"PUT /channels/{CHANNEL}/messages/:id/reactions/:reaction",
        ),
        ("GET", f"/guilds/{CHANNEL}/members/{MESSAGE}", f"GET /guilds/{CHANNEL}/members/:id"),
        ("POST", f"/webhooks/{CHANNEL}/some-token", f"POST /webhooks/{CHANNEL}/some-token"),
        (
            "POST",
            f"/interactions/{CHANNEL}/some-token/callback",
            "POST /interactions/:id/some-token/callback",
        ),
        ("GET", "/users/@me", "GET /users/@me"),
    ],
)
def test_route_normalisation(method: str, path: str, expected: str):
    assert str(Route.from_request(method, path)) == expected


def test_api_prefix_and_query_are_ignored():
    bare = Route.from_request("GET", f"/channels/{CHANNEL}/messages")
    prefixed = Route.from_request(
        "GET", f"/api/v10/channels/{CHANNEL}/messages?limit=50", api_base="/api/v10"
    )

    assert bare == prefixed
    assert hash(bare) == hash(prefixed)


def test_minor_parameters_share_a_route():
    first = Route.from_request("PATCH", f"/channels/{CHANNEL}/messages/{MESSAGE}")
    second = Route.from_request("PATCH", f"/channels/{CHANNEL}/messages/323456789012345678")

    assert first == second


def test_major_parameters_split_routes():
    first = Route.from_request("POST", f"/channels/{CHANNEL}/messages")
    second = Route.from_request("POST", f"/channels/{OTHER_CHANNEL}/messages")

    assert first != second


def test_methods_split_routes():
    assert Route.from_request("GET", "/users/@me") != Route.from_request("PATCH", "/users/@me")
