"""
Tests for the CKAN action API client.
"""

import pytest
from aiohttp import web

from ckan_client import CKANAPIClient, USER_AGENT, _encode_params
from dashboard_errors import CKANAPIError, CKANConnectionError, ErrorType, classify_error


def test_encode_params_lowercases_booleans_and_drops_none():
    assert _encode_params({"all_fields": True, "private": False, "limit": 5, "q": None}) == {
        "all_fields": "true",
        "private": "false",
        "limit": "5",
    }
    assert _encode_params(None) is None


def test_action_url_and_headers():
    client = CKANAPIClient("http://ckan.example.org/", api_key="secret")
    assert client.action_url("package_show") == "http://ckan.example.org/api/3/action/package_show"

    headers = client._get_headers(json_body=True)
    assert headers["Authorization"] == "secret"
    assert headers["Content-Type"] == "application/json"
    assert headers["User-Agent"] == USER_AGENT


def test_headers_without_api_key():
    client = CKANAPIClient("http://ckan.example.org")
    assert "Authorization" not in client._get_headers()


class TestUnwrap:
    def test_returns_result(self):
        assert CKANAPIClient._unwrap("x", 200, '{"success": true, "result": [1, 2]}') == [1, 2]

    def test_failure_uses_error_message(self):
        with pytest.raises(CKANAPIError) as exc_info:
            CKANAPIClient._unwrap("x", 403, '{"success": false, "error": {"message": "Access denied"}}')
        assert exc_info.value.message == "Access denied"
        assert exc_info.value.status == 403
        assert classify_error(exc_info.value) is ErrorType.CKAN_API_ERROR

    def test_failure_without_message(self):
        with pytest.raises(CKANAPIError) as exc_info:
            CKANAPIClient._unwrap("x", 409, '{"success": false, "error": {"name": ["bad"]}}')
        assert exc_info.value.message == "CKAN request failed"
        assert exc_info.value.error == {"name": ["bad"]}

    def test_non_json_body(self):
        with pytest.raises(CKANAPIError, match="Invalid response from CKAN for package_show"):
            CKANAPIClient._unwrap("package_show", 502, "<html>Bad gateway</html>")


async def test_call_action_sends_api_key(ckan_client, fake_ckan):
    fake_ckan.add_dataset("air-quality")

    names = await ckan_client.list_datasets()

    assert names == ["air-quality"]
    assert fake_ckan.requests[-1]["authorization"] == "test-key"
    assert fake_ckan.requests[-1]["method"] == "GET"


async def test_get_dataset_not_found(ckan_client):
    with pytest.raises(CKANAPIError) as exc_info:
        await ckan_client.get_dataset("missing")
    assert exc_info.value.status == 404
    assert classify_error(exc_info.value) is ErrorType.DATA_NOT_FOUND


async def test_create_and_delete_dataset(ckan_client, fake_ckan):
    created = await ckan_client.create_dataset({"name": "new-data", "title": "New data"})
    assert created["id"] == "id-new-data"
    assert fake_ckan.requests[-1]["data"]["title"] == "New data"

    await ckan_client.delete_dataset("new-data")
    assert "new-data" not in fake_ckan.datasets


async def test_is_dataset_name_available(ckan_client, fake_ckan):
    fake_ckan.add_dataset("taken")
    assert await ckan_client.is_dataset_name_available("taken") is False
    assert await ckan_client.is_dataset_name_available("free-name") is True


async def test_list_organizations_all_fields(ckan_client):
    orgs = await ckan_client.list_organizations(all_fields=True)
    assert [org["name"] for org in orgs] == ["city", "health"]
    assert await ckan_client.list_organizations() == ["city", "health"]


async def test_upload_resource_posts_multipart(ckan_client, fake_ckan):
    fake_ckan.add_dataset("budget")

    resource = await ckan_client.upload_resource(
        "id-budget", "Budget 2024", "budget.csv", b"a,b\n1,2\n",
        content_type="text/csv", format="CSV",
    )

    assert resource["url_type"] == "upload"
    request = fake_ckan.requests[-1]
    assert request["files"]["upload"]["filename"] == "budget.csv"
    assert request["data"]["package_id"] == "id-budget"
    assert request["data"]["format"] == "CSV"
    assert request["authorization"] == "test-key"


async def test_forward_returns_raw_response(ckan_client):
    status, body, content_type = await ckan_client.forward("nonexistent_action", json_body={})
    assert status == 400
    assert b"Action name not known" in body
    assert content_type == "application/json"


async def test_fetch_text_downloads_portal_file(ckan_client, ckan_url, fake_ckan):
    text = await ckan_client.fetch_text(f"{ckan_url}/files/sales.csv")
    assert text.startswith("month,sales")
    assert fake_ckan.file_authorizations == ["test-key"]


async def test_fetch_text_missing_file(ckan_client, ckan_url):
    with pytest.raises(CKANConnectionError):
        await ckan_client.fetch_text(f"{ckan_url}/files/nope.csv")


async def test_connection_error_is_wrapped():
    async with CKANAPIClient("http://127.0.0.1:1") as client:
        with pytest.raises(CKANConnectionError) as exc_info:
            await client.call_action("status_show")
    assert classify_error(exc_info.value) is ErrorType.NETWORK_ERROR


async def test_update_dataset_and_groups(ckan_client, fake_ckan):
    fake_ckan.add_dataset("roads")

    updated = await ckan_client.update_dataset({"id": "id-roads", "title": "Road network"})

    assert updated["title"] == "Road network"
    assert fake_ckan.requests[-1]["action"] == "package_update"
    assert await ckan_client.list_groups() == ["transport"]
    assert (await ckan_client.list_groups(all_fields=True))[0]["title"] == "Transport"


async def test_create_and_delete_resource(ckan_client, fake_ckan):
    fake_ckan.add_dataset("budget")

    resource = await ckan_client.create_resource(
        {"package_id": "budget", "name": "Link", "url": "https://example.org/data.csv"})
    await ckan_client.delete_resource(resource["id"])

    assert fake_ckan.datasets["budget"]["resources"] == []
    with pytest.raises(CKANAPIError):
        await ckan_client.delete_resource(resource["id"])


async def test_close_keeps_external_session(ckan_client):
    client = CKANAPIClient("http://ckan.example.org", session=ckan_client.session)
    await client.close()
    assert client.session is None
    assert not ckan_client.session.closed


def test_is_portal_url_compares_origins():
    client = CKANAPIClient("https://data.example.org", api_key="secret")
    assert client.is_portal_url("https://data.example.org/dataset/x/resource.csv")
    assert not client.is_portal_url("https://data.example.org.attacker.net/x.csv")
    assert not client.is_portal_url("http://data.example.org/x.csv")
    assert not client.is_portal_url("https://data.example.org:8443/x.csv")
    assert not client.is_portal_url("/files/relative.csv")


async def test_fetch_text_withholds_api_key_from_other_hosts(aiohttp_server, ckan_client):
    seen = []

    async def handle(request):
        seen.append(request.headers.get("Authorization"))
        return web.Response(text="a,b\n1,2\n", content_type="text/csv")

    app = web.Application()
    app.router.add_get("/x.csv", handle)
    other = await aiohttp_server(app)

    text = await ckan_client.fetch_text(str(other.make_url("/x.csv")))

    assert text.startswith("a,b")
    assert seen == [None]
