"""Tests for the HTTP remote client."""

import json

import httpx
import pytest

from docsync.errors import RemoteError, RemoteErrorKind
from docsync.sync import HttpRemoteClient


def make_client(handler, max_retries: int = 3) -> HttpRemoteClient:
    return HttpRemoteClient(
        "http://server:3000/",
        max_retries=max_retries,
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
    )


class TestPush:
    """Tests for pushing records."""

    @pytest.mark.asyncio
    async def test_new_record_is_posted(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"_id": "srv-1"})

        client = make_client(handler)
        response = await client.push("children", {"unique_identifier": "1", "name": "Foo"})
        await client.close()

        assert response.internal_id == "srv-1"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/children"
        assert json.loads(seen[0].content) == {
            "record": {"unique_identifier": "1", "name": "Foo"}
        }

    @pytest.mark.asyncio
    async def test_known_record_is_put(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"internal_id": "srv-1"})

        client = make_client(handler)
        await client.push("children", {"unique_identifier": "1", "internal_id": "srv-1"})
        await client.close()

        assert seen[0].method == "PUT"
        assert seen[0].url.path == "/api/children/srv-1"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"internal_id": "srv-1"})

        client = make_client(handler)
        response = await client.push("children", {"unique_identifier": "1"})
        await client.close()

        assert response.internal_id == "srv-1"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_retried_push_of_bound_record_targets_same_resource(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                return httpx.Response(503)
            return httpx.Response(200, json={"internal_id": "srv-1"})

        client = make_client(handler)
        payload = {"unique_identifier": "1", "internal_id": "srv-1", "name": "Bar"}
        await client.push("children", payload)
        await client.close()

        assert [(r.method, r.url.path) for r in calls] == [
            ("PUT", "/api/children/srv-1"),
            ("PUT", "/api/children/srv-1"),
        ]
        bodies = [json.loads(r.content) for r in calls]
        assert bodies[0] == bodies[1] == {"record": payload}

    @pytest.mark.asyncio
    async def test_numeric_id_is_returned_as_string(self):
        client = make_client(lambda request: httpx.Response(201, json={"_id": 42}))
        response = await client.push("children", {"unique_identifier": "1"})
        await client.close()

        assert response.internal_id == "42"

    @pytest.mark.asyncio
    async def test_connection_failure_exhausts_retries(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        client = make_client(handler, max_retries=2)
        with pytest.raises(RemoteError) as exc_info:
            await client.push("children", {"unique_identifier": "1"})
        await client.close()

        assert exc_info.value.kind == RemoteErrorKind.NETWORK
        assert exc_info.value.retryable
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_conflict_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(409, text="duplicate")

        client = make_client(handler)
        with pytest.raises(RemoteError) as exc_info:
            await client.push("children", {"unique_identifier": "1"})
        await client.close()

        assert exc_info.value.kind == RemoteErrorKind.CONFLICT
        assert not exc_info.value.retryable
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_validation_error(self):
        client = make_client(lambda request: httpx.Response(422, text="bad field"))
        with pytest.raises(RemoteError) as exc_info:
            await client.push("children", {"unique_identifier": "1"})
        await client.close()

        assert exc_info.value.kind == RemoteErrorKind.VALIDATION
        assert exc_info.value.status_code == 422

    @pytest.mark.asyncio
    async def test_response_without_identity_rejected(self):
        client = make_client(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(RemoteError):
            await client.push("children", {"unique_identifier": "1"})
        await client.close()


class TestPullAndDelete:
    """Tests for listing and purging remote records."""

    @pytest.mark.asyncio
    async def test_pull_all_list(self):
        client = make_client(
            lambda request: httpx.Response(200, json=[{"unique_identifier": "1"}])
        )
        records = await client.pull_all("children")
        await client.close()

        assert records == [{"unique_identifier": "1"}]

    @pytest.mark.asyncio
    async def test_pull_all_wrapped(self):
        client = make_client(
            lambda request: httpx.Response(200, json={"records": [{"unique_identifier": "1"}]})
        )
        records = await client.pull_all("children")
        await client.close()

        assert len(records) == 1

    @pytest.mark.asyncio
    async def test_pull_all_rejects_other_shapes(self):
        client = make_client(lambda request: httpx.Response(200, json="nope"))
        with pytest.raises(RemoteError):
            await client.pull_all("children")
        await client.close()

    @pytest.mark.asyncio
    async def test_delete_all(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        client = make_client(handler)
        assert await client.delete_all("enquiries")
        await client.close()

        assert seen[0].method == "DELETE"
        assert seen[0].url.path == "/api/enquiries/destroy_all"
