#!/usr/bin/env python3

import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from aiohttp import web
from pydantic import ValidationError

from chart_builder import (
    CHART_TEMPLATES,
    CHART_TYPES,
    ChartSpec,
    describe_mapping,
    generate_chart_code,
    get_template,
)
from ckan_client import CKANAPIClient
from csv_loader import load_csv
from dashboard_config import Settings, configure_logging
from dashboard_errors import (
    ChartConfigError,
    DashboardError,
    ErrorType,
    InvalidSlugError,
    MDXCompileError,
    StoryNotFoundError,
    classify_error,
)
from dataset_forms import DatasetForm, ResourceDraft, form_errors
from dataset_service import (
    create_dataset,
    csv_resources,
    dashboard_summary,
    delete_dataset,
    fetch_datasets,
    filter_datasets,
    portal_stats,
    update_dataset,
)
from mdx_generator import mdx_generator
from mdx_preview import compile_mdx, render_live
from story_editor import append_template, continue_list, insert_markdown, insert_snippet
from story_store import StoryStore, StoryUpdate
from upload_store import UploadStore


logger = logging.getLogger("ckan-dashboard")
proxy_logger = logging.getLogger("ckan-dashboard.proxy")

SETTINGS = web.AppKey("settings", Settings)
CKAN_CLIENT = web.AppKey("ckan_client", CKANAPIClient)
STORIES = web.AppKey("stories", StoryStore)
UPLOADS = web.AppKey("uploads", UploadStore)

NAV_ITEMS = [
    {"name": "Dashboard", "href": "/dashboard"},
    {"name": "Datasets", "href": "/datasets"},
    {"name": "Visualizations", "href": "/visualizations"},
    {"name": "Groups", "href": "/groups"},
    {"name": "Organizations", "href": "/organizations"},
    {"name": "Users", "href": "/users"},
]


class StandardResponse:
    """CKAN-style response envelope used by the dashboard's own endpoints"""

    def __init__(self, success: bool, result: Optional[Any] = None,
                 error: Optional[Dict] = None, status: int = 200):
        self.success = success
        self.result = result
        self.error = error
        self.status = status

    @classmethod
    def failure(cls, exc: BaseException, status: Optional[int] = None,
                message: Optional[str] = None, **extra) -> "StandardResponse":
        error = {
            "message": message or str(exc),
            "__type": classify_error(exc).value,
        }
        error.update(extra)
        return cls(False, error=error, status=status or status_for(exc))

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.success:
            result["result"] = self.result
        if self.error:
            result["error"] = self.error
        return result

    def to_response(self) -> web.Response:
        return web.json_response(self.to_dict(), status=self.status)


def status_for(exc: BaseException) -> int:
    if isinstance(exc, StoryNotFoundError):
        return 404
    if isinstance(exc, (ValidationError, InvalidSlugError, MDXCompileError)):
        return 400
    if isinstance(exc, DashboardError) and exc.error_type is ErrorType.INVALID_PARAMS:
        return 400
    return 500


def validation_failure(exc: ValidationError, prefix: str = "") -> web.Response:
    fields = {f"{prefix}{key}": value for key, value in form_errors(exc).items()}
    message = next(iter(fields.values()), "Invalid request")
    return StandardResponse.failure(exc, status=400, message=message, fields=fields).to_response()


async def read_json(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    body = await request.json()
    if not isinstance(body, dict):
        raise web.HTTPBadRequest(text=json.dumps({"error": "Expected a JSON object"}),
                                 content_type="application/json")
    return body


def int_field(body: Dict[str, Any], key: str, default: int) -> int:
    value = body.get(key, default)
    try:
        if isinstance(value, bool):
            raise TypeError(key)
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer") from None


async def read_form(request: web.Request) -> Tuple[Dict[str, Any], Dict[str, web.FileField]]:
    post = await request.post()
    fields: Dict[str, Any] = {}
    files: Dict[str, web.FileField] = {}
    for key, value in post.items():
        if isinstance(value, web.FileField):
            files[key] = value
        else:
            fields[key] = value
    return fields, files


def to_form_data(fields: Dict[str, Any], files: Dict[str, web.FileField]) -> aiohttp.FormData:
    form = aiohttp.FormData()
    for key, value in fields.items():
        form.add_field(key, str(value))
    for key, upload in files.items():
        form.add_field(key, upload.file.read(), filename=upload.filename,
                       content_type=upload.content_type)
    return form


@web.middleware
async def error_middleware(request: web.Request, handler):
    start_time = time.time()
    try:
        response = await handler(request)
    except web.HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unhandled error on {request.method} {request.path}: {e}")
        return web.json_response({"error": str(e)}, status=500)
    execution_time = int((time.time() - start_time) * 1000)
    logger.debug(f"{request.method} {request.path} -> {response.status} ({execution_time} ms)")
    return response


# CKAN proxy

async def handle_ckan_proxy(request: web.Request) -> web.Response:
    """Forward /api/ckan/<action> to CKAN with the API key injected"""
    action = request.match_info["action"]
    client = request.app[CKAN_CLIENT]
    try:
        if request.method == "POST":
            body = await request.json() if request.can_read_body else {}
            status, payload, content_type = await client.forward(action, "POST", json_body=body)
        else:
            status, payload, content_type = await client.forward(
                action, "GET", params=request.rel_url.query)
    except (ValueError, DashboardError) as e:
        proxy_logger.error(f"Proxy error for {action}: {e}")
        return web.json_response({"error": str(e)}, status=500)

    proxy_logger.info(f"CKAN responded {status} for {action}")
    return web.Response(status=status, body=payload, content_type=content_type)


async def handle_resource_create(request: web.Request) -> web.Response:
    client = request.app[CKAN_CLIENT]
    try:
        if request.content_type.startswith("multipart/"):
            fields, files = await read_form(request)
            status, payload, content_type = await client.forward(
                "resource_create", form=to_form_data(fields, files))
        else:
            body = await request.json()
            status, payload, content_type = await client.forward("resource_create", json_body=body)
    except (ValueError, DashboardError) as e:
        proxy_logger.error(f"Resource create error: {e}")
        return StandardResponse.failure(e, status=500,
                                        message=str(e) or "Failed to create resource").to_response()
    return web.Response(status=status, body=payload, content_type=content_type)


async def handle_resource_delete(request: web.Request) -> web.Response:
    client = request.app[CKAN_CLIENT]
    try:
        body = await read_json(request)
        resource_id = body.get("id")
        if not resource_id:
            return StandardResponse.failure(
                DashboardError("Resource ID is required"), status=400).to_response()
        status, payload, content_type = await client.forward("resource_delete", json_body={"id": resource_id})
    except (ValueError, DashboardError) as e:
        proxy_logger.error(f"Resource delete error: {e}")
        return StandardResponse.failure(e, status=500,
                                        message=str(e) or "Failed to delete resource").to_response()
    return web.Response(status=status, body=payload, content_type=content_type)


# Dashboard and datasets

async def handle_stats(request: web.Request) -> web.Response:
    try:
        stats = await portal_stats(request.app[CKAN_CLIENT])
    except DashboardError as e:
        logger.error(f"Stats error: {e}")
        return web.json_response({"error": "Failed to fetch stats"}, status=500)
    return web.json_response(stats)


async def handle_dashboard(request: web.Request) -> web.Response:
    try:
        summary = await dashboard_summary(request.app[CKAN_CLIENT])
    except DashboardError as e:
        logger.error(f"Failed to fetch dashboard summary: {e}")
        return StandardResponse.failure(e).to_response()
    return StandardResponse(True, summary).to_response()


async def handle_list_datasets(request: web.Request) -> web.Response:
    query = request.rel_url.query
    try:
        datasets = await fetch_datasets(request.app[CKAN_CLIENT])
    except DashboardError as e:
        logger.error(f"Failed to fetch datasets: {e}")
        return StandardResponse.failure(e).to_response()
    return StandardResponse(True, filter_datasets(datasets, query.get("q", ""), query.get("org", ""))).to_response()


async def _read_dataset_submission(request: web.Request) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Dataset fields plus resource drafts, from JSON or multipart (payload + resource_<i> files)"""
    if request.content_type.startswith("multipart/"):
        fields, files = await read_form(request)
        payload = json.loads(fields.get("payload") or "{}")
        resources = list(payload.pop("resources", None) or [])
        for index, resource in enumerate(resources):
            upload = files.get(f"resource_{index}")
            if upload is not None:
                resource.update(
                    resource_type="file",
                    filename=upload.filename,
                    content=upload.file.read(),
                    content_type=upload.content_type,
                )
        return payload, resources

    payload = await read_json(request)
    return payload, list(payload.pop("resources", None) or [])


async def handle_create_dataset(request: web.Request) -> web.Response:
    try:
        payload, raw_resources = await _read_dataset_submission(request)
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()

    try:
        form = DatasetForm(**payload)
    except ValidationError as e:
        return validation_failure(e)

    resources = []
    for index, raw in enumerate(raw_resources):
        try:
            resources.append(ResourceDraft(**raw))
        except ValidationError as e:
            return validation_failure(e, prefix=f"resources.{index}.")

    try:
        dataset = await create_dataset(request.app[CKAN_CLIENT], form, resources)
    except DashboardError as e:
        logger.error(f"Failed to create dataset {form.name}: {e}")
        return StandardResponse.failure(e).to_response()
    return StandardResponse(True, dataset).to_response()


async def handle_update_dataset(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    try:
        form = DatasetForm(**await read_json(request))
    except ValidationError as e:
        return validation_failure(e)
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()

    try:
        dataset = await update_dataset(request.app[CKAN_CLIENT], name, form)
    except DashboardError as e:
        logger.error(f"Failed to update dataset {name}: {e}")
        return StandardResponse.failure(e).to_response()
    return StandardResponse(True, dataset).to_response()


async def handle_delete_dataset(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    try:
        await delete_dataset(request.app[CKAN_CLIENT], name)
    except DashboardError as e:
        logger.error(f"Delete error for {name}: {e}")
        return StandardResponse.failure(e, message="Failed to delete dataset").to_response()
    return StandardResponse(True, {"id": name}).to_response()


async def handle_name_available(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    available = await request.app[CKAN_CLIENT].is_dataset_name_available(name)
    return StandardResponse(True, {"name": name, "available": available}).to_response()


async def handle_organizations(request: web.Request) -> web.Response:
    try:
        organizations = await request.app[CKAN_CLIENT].list_organizations(all_fields=True)
    except DashboardError as e:
        logger.error(f"Failed to fetch organizations: {e}")
        return StandardResponse.failure(e, message="Failed to load organizations").to_response()
    return StandardResponse(True, organizations).to_response()


# Chart wizard

async def handle_chart_templates(request: web.Request) -> web.Response:
    templates = [dict(template, code=template["code"].strip()) for template in CHART_TEMPLATES]
    return StandardResponse(True, templates).to_response()


async def handle_chart_types(request: web.Request) -> web.Response:
    return StandardResponse(True, CHART_TYPES).to_response()


async def handle_chart_datasets(request: web.Request) -> web.Response:
    try:
        datasets = await fetch_datasets(request.app[CKAN_CLIENT])
    except DashboardError as e:
        logger.error(f"Failed to fetch datasets: {e}")
        return StandardResponse.failure(e, message="Failed to load datasets").to_response()

    result = [
        {
            "id": ds.get("id"),
            "name": ds.get("name"),
            "title": ds.get("title"),
            "notes": ds.get("notes"),
            "num_resources": ds.get("num_resources", len(ds.get("resources") or [])),
            "num_csv_resources": len(csv_resources(ds)),
        }
        for ds in datasets
    ]
    return StandardResponse(True, result).to_response()


async def handle_chart_resources(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    try:
        dataset = await request.app[CKAN_CLIENT].get_dataset(name)
    except DashboardError as e:
        return StandardResponse.failure(e).to_response()
    resources = [
        {key: res.get(key) for key in ("id", "name", "format", "url", "size")}
        for res in csv_resources(dataset)
    ]
    return StandardResponse(True, resources).to_response()


async def handle_chart_preview(request: web.Request) -> web.Response:
    url = request.rel_url.query.get("url")
    if not url:
        return StandardResponse.failure(DashboardError("A resource url is required"), status=400).to_response()
    try:
        csv_data = await load_csv(request.app[CKAN_CLIENT], url)
    except DashboardError as e:
        return StandardResponse.failure(e).to_response()

    preview = csv_data.to_dict()
    preview.pop("rows")
    return StandardResponse(True, preview).to_response()


async def handle_chart_generate(request: web.Request) -> web.Response:
    try:
        body = await read_json(request)
        spec = ChartSpec.from_dict(body)
        code = generate_chart_code(spec, columns=body.get("columns"))
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()
    except DashboardError as e:
        return StandardResponse.failure(e).to_response()
    return StandardResponse(True, {"code": code, "summary": describe_mapping(spec)}).to_response()


# Story editor

async def handle_editor_insert(request: web.Request) -> web.Response:
    body = await read_json(request)
    content = body.get("content", "")
    if body.get("templateName"):
        try:
            body["template"] = get_template(body["templateName"])["code"]
        except ChartConfigError as e:
            return StandardResponse.failure(e, status=404).to_response()
    if body.get("template"):
        return StandardResponse(True, {"content": append_template(content, body["template"])}).to_response()

    try:
        position = int_field(body, "position", len(content))
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()
    new_content, cursor = insert_snippet(content, position, body.get("code", ""))
    return StandardResponse(True, {"content": new_content, "cursor": cursor}).to_response()


async def handle_editor_format(request: web.Request) -> web.Response:
    body = await read_json(request)
    content = body.get("content", "")
    try:
        new_content, cursor = insert_markdown(
            content, int_field(body, "start", len(content)), int_field(body, "end", len(content)),
            body.get("before", ""), body.get("after", ""), body.get("placeholder", ""),
        )
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()
    return StandardResponse(True, {"content": new_content, "cursor": cursor}).to_response()


async def handle_editor_newline(request: web.Request) -> web.Response:
    body = await read_json(request)
    content = body.get("content", "")
    try:
        cursor = int_field(body, "cursor", len(content))
    except ValueError as e:
        return StandardResponse.failure(e, status=400, message="Invalid request body").to_response()
    edit = continue_list(content, cursor)
    if edit is None:
        return StandardResponse(True, {"content": content, "cursor": cursor, "continued": False}).to_response()
    return StandardResponse(True, {"content": edit[0], "cursor": edit[1], "continued": True}).to_response()


# Stories

async def handle_list_stories(request: web.Request) -> web.Response:
    return StandardResponse(True, request.app[STORIES].list()).to_response()


async def handle_get_story(request: web.Request) -> web.Response:
    slug = request.rel_url.query.get("slug", "")
    try:
        story = request.app[STORIES].get(slug)
    except (StoryNotFoundError, InvalidSlugError, MDXCompileError) as e:
        return web.json_response({"success": False, "error": e.message}, status=status_for(e))
    return StandardResponse(True, story).to_response()


async def handle_save_story(request: web.Request) -> web.Response:
    try:
        body = await read_json(request)
        slug = request.app[STORIES].save(
            body.get("slug"), body.get("metadata") or {}, body.get("content") or "",
            body.get("components") or [],
        )
    except InvalidSlugError as e:
        return web.json_response({"error": e.message}, status=400)
    except (OSError, ValueError) as e:
        logger.error(f"Error saving story: {e}")
        return web.json_response({"error": "Failed to save story"}, status=500)
    return web.json_response({"success": True, "slug": slug})


async def handle_update_story(request: web.Request) -> web.Response:
    try:
        update = StoryUpdate.from_payload(await read_json(request))
    except ValidationError as e:
        fields = form_errors(e)
        return web.json_response({"error": next(iter(fields.values())), "fields": fields}, status=400)

    try:
        story = request.app[STORIES].update(update)
    except InvalidSlugError as e:
        return web.json_response({"error": e.message}, status=400)
    except OSError as e:
        logger.error(f"Error updating story {update.slug}: {e}")
        return web.json_response({"error": "Failed to update story"}, status=500)
    return StandardResponse(True, story).to_response()


async def handle_preview_story(request: web.Request) -> web.Response:
    body = await read_json(request)
    try:
        compiled = compile_mdx(body.get("content", ""))
    except MDXCompileError as e:
        logger.info(f"MDX compilation error: {e}")
        return StandardResponse.failure(e).to_response()

    if body.get("live"):
        client = request.app[CKAN_CLIENT]
        compiled = await render_live(compiled, lambda url: load_csv(client, url))
    return StandardResponse(True, compiled.to_dict()).to_response()


async def handle_generate_story(request: web.Request) -> web.Response:
    body = await read_json(request)
    return StandardResponse(True, {"content": mdx_generator.generate(body)}).to_response()


# Uploads and navigation

async def handle_upload(request: web.Request) -> web.Response:
    try:
        _, files = await read_form(request)
        upload = files.get("file")
        if upload is None:
            return web.json_response({"error": "No file provided"}, status=400)
        result = request.app[UPLOADS].save(upload.filename, upload.file.read(), upload.content_type)
    except (OSError, ValueError) as e:
        logger.error(f"Upload error: {e}")
        return web.json_response({"error": str(e) or "Upload failed"}, status=500)
    return web.json_response(result)


async def handle_navigation(request: web.Request) -> web.Response:
    path = request.rel_url.query.get("path", "")
    items = [dict(item, active=item["href"] == path) for item in NAV_ITEMS]
    return StandardResponse(True, items).to_response()


async def handle_health(request: web.Request) -> web.Response:
    settings = request.app[SETTINGS]
    return web.json_response({
        "status": "ok",
        "ckan_url": settings.ckan_url,
        "api_key_configured": bool(settings.ckan_api_key),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })


async def ckan_client_ctx(app: web.Application):
    settings = app[SETTINGS]
    async with CKANAPIClient(settings.ckan_url, settings.ckan_api_key) as client:
        app[CKAN_CLIENT] = client
        yield


def create_app(settings: Optional[Settings] = None) -> web.Application:
    settings = settings or Settings.from_env()
    app = web.Application(middlewares=[error_middleware],
                          client_max_size=settings.max_upload_mb * 1024 * 1024)
    app[SETTINGS] = settings
    app[STORIES] = StoryStore(settings.stories_dir)
    app[UPLOADS] = UploadStore(settings.upload_dir)
    app.cleanup_ctx.append(ckan_client_ctx)

    router = app.router
    # Specific CKAN routes must precede the catch-all proxy
    router.add_post("/api/ckan/resource_create", handle_resource_create)
    router.add_post("/api/ckan/resource_delete", handle_resource_delete)
    router.add_route("GET", "/api/ckan/{action:.+}", handle_ckan_proxy)
    router.add_route("POST", "/api/ckan/{action:.+}", handle_ckan_proxy)

    router.add_get("/api/stats", handle_stats)
    router.add_get("/api/dashboard", handle_dashboard)
    router.add_get("/api/datasets", handle_list_datasets)
    router.add_post("/api/datasets", handle_create_dataset)
    router.add_get("/api/datasets/{name}/available", handle_name_available)
    router.add_patch("/api/datasets/{name}", handle_update_dataset)
    router.add_delete("/api/datasets/{name}", handle_delete_dataset)
    router.add_get("/api/organizations", handle_organizations)

    router.add_get("/api/charts/templates", handle_chart_templates)
    router.add_get("/api/charts/types", handle_chart_types)
    router.add_get("/api/charts/datasets", handle_chart_datasets)
    router.add_get("/api/charts/datasets/{name}/resources", handle_chart_resources)
    router.add_get("/api/charts/preview", handle_chart_preview)
    router.add_post("/api/charts/generate", handle_chart_generate)

    router.add_post("/api/editor/insert", handle_editor_insert)
    router.add_post("/api/editor/format", handle_editor_format)
    router.add_post("/api/editor/newline", handle_editor_newline)

    router.add_get("/api/stories", handle_list_stories)
    router.add_get("/api/stories/get", handle_get_story)
    router.add_post("/api/stories/save", handle_save_story)
    router.add_put("/api/stories/update", handle_update_story)
    router.add_post("/api/stories/preview", handle_preview_story)
    router.add_post("/api/stories/generate", handle_generate_story)

    router.add_post("/api/upload", handle_upload)
    router.add_get("/api/navigation", handle_navigation)
    router.add_get("/api/health", handle_health)

    os.makedirs(settings.upload_dir, exist_ok=True)
    router.add_static("/uploads", settings.upload_dir)
    return app


def main():
    """Run the dashboard API server"""
    settings = Settings.from_env()
    configure_logging(settings)
    logger.info(f"Starting dashboard on {settings.host}:{settings.port}, CKAN at {settings.ckan_url}")
    web.run_app(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
