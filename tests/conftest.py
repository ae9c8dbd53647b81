"""
Shared fixtures: an in-process fake CKAN action API and dashboard apps wired to it.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest
from aiohttp import web

from ckan_client import CKANAPIClient
from dashboard_config import Settings
from dashboard_server import create_app


SALES_CSV = "month,sales,returns\nJan,100,5\nFeb,120,7\nMar,90,\n\n"


def ckan_error(status: int, message: Optional[str] = None, error_type: Optional[str] = None,
               **fields) -> web.Response:
    error: Dict[str, Any] = dict(fields)
    if message:
        error["message"] = message
    if error_type:
        error["__type"] = error_type
    return web.json_response({"success": False, "error": error}, status=status)


def ckan_ok(result: Any) -> web.Response:
    return web.json_response({"help": "fake", "success": True, "result": result})


class FakeCKAN:
    """Minimal stateful stand-in for CKAN's /api/3/action endpoints"""

    def __init__(self):
        self.datasets: Dict[str, Dict[str, Any]] = {}
        self.organizations = [
            {"id": "org-1", "name": "city", "title": "City Council", "package_count": 0},
            {"id": "org-2", "name": "health", "title": "Health Board", "package_count": 0},
        ]
        self.users = [{"name": "admin"}, {"name": "editor"}, {"name": "viewer"}]
        self.users_forbidden = False
        self.files: Dict[str, str] = {"sales.csv": SALES_CSV, "empty.csv": ""}
        self.requests: List[Dict[str, Any]] = []
        self.file_authorizations: List[Optional[str]] = []
        self._ids = itertools.count(1)

    def add_dataset(self, name: str, **fields) -> Dict[str, Any]:
        dataset = {
            "id": f"id-{name}",
            "name": name,
            "title": fields.pop("title", name.replace("-", " ").title()),
            "notes": "",
            "private": False,
            "organization": {"id": "org-1", "name": "city", "title": "City Council"},
            "owner_org": "org-1",
            "metadata_modified": "2024-01-01T00:00:00",
            "tags": [],
            "resources": [],
        }
        dataset.update(fields)
        self.datasets[name] = dataset
        return dataset

    def find(self, id_or_name: Optional[str]) -> Optional[Dict[str, Any]]:
        for dataset in self.datasets.values():
            if id_or_name in (dataset["id"], dataset["name"]):
                return dataset
        return None

    def make_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/api/3/action/{action}", self.handle_action)
        app.router.add_get("/files/{name}", self.handle_file)
        return app

    async def handle_file(self, request: web.Request) -> web.Response:
        name = request.match_info["name"]
        self.file_authorizations.append(request.headers.get("Authorization"))
        if name not in self.files:
            raise web.HTTPNotFound()
        return web.Response(text=self.files[name], content_type="text/csv")

    async def handle_action(self, request: web.Request) -> web.Response:
        action = request.match_info["action"]
        files: Dict[str, Any] = {}
        if request.method == "GET":
            data: Dict[str, Any] = dict(request.query)
        elif request.content_type.startswith("multipart/"):
            data = {}
            for key, value in (await request.post()).items():
                if isinstance(value, web.FileField):
                    files[key] = {"filename": value.filename, "content": value.file.read(),
                                  "content_type": value.content_type}
                else:
                    data[key] = value
        elif request.can_read_body:
            data = await request.json()
        else:
            data = {}

        self.requests.append({
            "action": action,
            "method": request.method,
            "authorization": request.headers.get("Authorization"),
            "data": data,
            "files": files,
        })

        handler = getattr(self, f"action_{action}", None)
        if handler is None:
            return ckan_error(400, f"Action name not known: {action}")
        return handler(request, data, files)

    # Actions

    def action_status_show(self, request, data, files):
        return ckan_ok({"ckan_version": "2.10.4", "site_title": "Fake CKAN"})

    def action_package_list(self, request, data, files):
        names = sorted(self.datasets)
        offset = int(data.get("offset", 0))
        if "limit" in data:
            names = names[offset:offset + int(data["limit"])]
        return ckan_ok(names)

    def action_package_show(self, request, data, files):
        dataset = self.find(data.get("id"))
        if dataset is None:
            return ckan_error(404, "Not found", error_type="Not Found Error")
        return ckan_ok(dataset)

    def action_package_create(self, request, data, files):
        if data.get("name") in self.datasets:
            return ckan_error(409, error_type="Validation Error", name=["That URL is already in use."])
        dataset = self.add_dataset(data["name"], **{k: v for k, v in data.items() if k != "name"})
        return ckan_ok(dataset)

    def action_package_patch(self, request, data, files):
        dataset = self.find(data.get("id"))
        if dataset is None:
            return ckan_error(404, "Not found", error_type="Not Found Error")
        dataset.update({k: v for k, v in data.items() if k != "id"})
        return ckan_ok(dataset)

    def action_package_update(self, request, data, files):
        dataset = self.find(data.get("id") or data.get("name"))
        if dataset is None:
            return ckan_error(404, "Not found", error_type="Not Found Error")
        dataset.update({k: v for k, v in data.items() if k not in ("id", "name")})
        return ckan_ok(dataset)

    def action_group_list(self, request, data, files):
        groups = [{"name": "transport", "title": "Transport", "package_count": 2}]
        if data.get("all_fields") == "true":
            return ckan_ok(groups)
        return ckan_ok([group["name"] for group in groups])

    def action_package_delete(self, request, data, files):
        dataset = self.find(data.get("id"))
        if dataset is None:
            return ckan_error(404, "Not found", error_type="Not Found Error")
        del self.datasets[dataset["name"]]
        return ckan_ok(None)

    def action_organization_list(self, request, data, files):
        if data.get("all_fields") == "true":
            return ckan_ok(self.organizations)
        return ckan_ok([org["name"] for org in self.organizations])

    def action_user_list(self, request, data, files):
        if self.users_forbidden:
            return ckan_error(403, "Access denied: User not authorized to list users",
                              error_type="Authorization Error")
        return ckan_ok(self.users)

    def action_resource_create(self, request, data, files):
        dataset = self.find(data.get("package_id"))
        if dataset is None:
            return ckan_error(409, "Package was not found.", error_type="Validation Error")
        if data.get("name") == "broken":
            return ckan_error(409, "Resource could not be stored", error_type="Validation Error")

        resource = {
            "id": f"res-{next(self._ids)}",
            "package_id": dataset["id"],
            "name": data.get("name"),
            "description": data.get("description", ""),
            "format": data.get("format", ""),
            "url": data.get("url", ""),
        }
        upload = files.get("upload")
        if upload:
            resource["url"] = f"{request.url.origin()}/files/{upload['filename']}"
            resource["url_type"] = "upload"
            resource["size"] = len(upload["content"])
            self.files[upload["filename"]] = upload["content"].decode("utf-8", errors="replace")
        dataset["resources"].append(resource)
        return ckan_ok(resource)

    def action_resource_delete(self, request, data, files):
        for dataset in self.datasets.values():
            for resource in dataset["resources"]:
                if resource["id"] == data.get("id"):
                    dataset["resources"].remove(resource)
                    return ckan_ok(None)
        return ckan_error(404, "Resource was not found.", error_type="Not Found Error")


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def fake_ckan() -> FakeCKAN:
    return FakeCKAN()


@pytest.fixture
async def ckan_server(aiohttp_server, fake_ckan):
    return await aiohttp_server(fake_ckan.make_app())


@pytest.fixture
def ckan_url(ckan_server) -> str:
    return str(ckan_server.make_url("")).rstrip("/")


@pytest.fixture
async def ckan_client(ckan_url):
    async with CKANAPIClient(ckan_url, api_key="test-key") as client:
        yield client


@pytest.fixture
def settings(tmp_path, ckan_url) -> Settings:
    return Settings(
        ckan_url=ckan_url,
        ckan_api_key="test-key",
        content_dir=str(tmp_path / "content"),
        upload_dir=str(tmp_path / "uploads"),
        log_file=None,
    )


@pytest.fixture
async def dashboard(aiohttp_client, settings):
    return await aiohttp_client(create_app(settings))
