#!/usr/bin/env python3

import asyncio
import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions
from pydantic import ValidationError

from chart_builder import ChartSpec, describe_mapping, generate_chart_code
from ckan_client import CKANAPIClient
from csv_loader import load_csv
from dashboard_config import Settings, configure_logging
from dashboard_errors import ErrorType, classify_error
from dataset_forms import DatasetForm, ResourceDraft, form_errors
from dataset_service import create_dataset, delete_dataset, fetch_datasets, filter_datasets
from mdx_preview import compile_mdx, render_live
from story_store import StoryStore


logger = logging.getLogger("ckan-dashboard.mcp")

API_VERSION = "1.0.0"


class StandardResponse:
    def __init__(self, success: bool, data: Optional[Any] = None, error: Optional[Dict] = None):
        self.success = success
        self.data = data
        self.error = error
        self.metadata = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "execution_time_ms": 0,
            "api_version": API_VERSION
        }

    def to_dict(self):
        result = {
            "success": self.success,
            "metadata": self.metadata
        }
        if self.data is not None:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        return result


ckan_client: Optional[CKANAPIClient] = None
story_store: Optional[StoryStore] = None

server = Server("ckan-dashboard")


@server.list_tools()
async def handle_list_tools() -> List[types.Tool]:
    """List dashboard tools"""
    return [
        types.Tool(
            name="dashboard_dataset_list",
            description="List datasets with full details, optionally filtered by text or organization",
            inputSchema={
                "type": "object",
                "properties": {
                    "q": {"type": "string", "description": "Match against title, name and description"},
                    "org": {"type": "string", "description": "Organization name"},
                    "limit": {"type": "integer", "description": "Maximum number of datasets to load"}
                }
            }
        ),
        types.Tool(
            name="dashboard_dataset_create",
            description="Validate and create a dataset, then attach URL resources in order",
            inputSchema={
                "type": "object",
                "properties": {
                    "title": {"type": "string"},
                    "name": {"type": "string", "description": "URL name (lowercase, digits, - and _)"},
                    "author": {"type": "string"},
                    "author_email": {"type": "string"},
                    "notes": {"type": "string"},
                    "tags": {"type": "string", "description": "Comma separated tags"},
                    "owner_org": {"type": "string", "description": "Organization ID"},
                    "private": {"type": "boolean", "default": False},
                    "resources": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string"},
                                "url": {"type": "string"},
                                "description": {"type": "string"},
                                "format": {"type": "string"}
                            },
                            "required": ["name", "url"]
                        }
                    }
                },
                "required": ["title", "name", "owner_org"]
            }
        ),
        types.Tool(
            name="dashboard_dataset_delete",
            description="Delete a dataset by ID or name",
            inputSchema={
                "type": "object",
                "properties": {"id": {"type": "string", "description": "Dataset ID or name"}},
                "required": ["id"]
            }
        ),
        types.Tool(
            name="dashboard_story_save",
            description="Write a story's MDX content and metadata to the content directory",
            inputSchema={
                "type": "object",
                "properties": {
                    "slug": {"type": "string"},
                    "metadata": {"type": "object"},
                    "content": {"type": "string"},
                    "components": {"type": "array"}
                },
                "required": ["slug", "content"]
            }
        ),
        types.Tool(
            name="dashboard_story_get",
            description="Read a saved story",
            inputSchema={
                "type": "object",
                "properties": {"slug": {"type": "string"}},
                "required": ["slug"]
            }
        ),
        types.Tool(
            name="dashboard_story_preview",
            description="Compile MDX (given directly or by story slug) to HTML, optionally loading chart data",
            inputSchema={
                "type": "object",
                "properties": {
                    "content": {"type": "string"},
                    "slug": {"type": "string"},
                    "live": {"type": "boolean", "default": False}
                }
            }
        ),
        types.Tool(
            name="dashboard_chart_generate",
            description="Generate a DataFetchChart snippet from a CSV column mapping",
            inputSchema={
                "type": "object",
                "properties": {
                    "chartType": {
                        "type": "string",
                        "enum": ["bar", "line", "pie", "area", "multiline", "scatter"],
                        "default": "bar"
                    },
                    "resourceUrl": {"type": "string"},
                    "xKey": {"type": "string"},
                    "yKey": {"type": "string"},
                    "yKeys": {"type": "array", "items": {"type": "string"}},
                    "checkColumns": {
                        "type": "boolean",
                        "description": "Load the CSV and verify the columns exist",
                        "default": False
                    }
                },
                "required": ["resourceUrl", "xKey"]
            }
        ),
    ]


async def run_tool(name: str, arguments: Optional[Dict[str, Any]],
                   client: CKANAPIClient, stories: StoryStore) -> Any:
    """Execute a dashboard tool and return its data"""
    arguments = arguments or {}

    if name == "dashboard_dataset_list":
        datasets = await fetch_datasets(client, limit=arguments.get("limit"))
        return filter_datasets(datasets, arguments.get("q", ""), arguments.get("org", ""))

    elif name == "dashboard_dataset_create":
        form = DatasetForm(**arguments)
        resources = [ResourceDraft(**resource) for resource in arguments.get("resources") or []]
        return await create_dataset(client, form, resources)

    elif name == "dashboard_dataset_delete":
        await delete_dataset(client, arguments["id"])
        return {"id": arguments["id"], "deleted": True}

    elif name == "dashboard_story_save":
        slug = stories.save(arguments["slug"], arguments.get("metadata") or {},
                            arguments["content"], arguments.get("components") or [])
        return {"slug": slug}

    elif name == "dashboard_story_get":
        return stories.get(arguments["slug"])

    elif name == "dashboard_story_preview":
        content = arguments.get("content")
        if content is None:
            content = stories.get(arguments.get("slug", ""))["content"]
        compiled = compile_mdx(content)
        if arguments.get("live"):
            compiled = await render_live(compiled, lambda url: load_csv(client, url))
        return compiled.to_dict()

    elif name == "dashboard_chart_generate":
        spec = ChartSpec.from_dict(arguments)
        columns = None
        if arguments.get("checkColumns"):
            columns = (await load_csv(client, spec.resource_url)).columns
        return {"code": generate_chart_code(spec, columns), "summary": describe_mapping(spec)}

    raise ValueError(f"Unknown tool: {name}")


async def call_dashboard_tool(name: str, arguments: Optional[Dict[str, Any]],
                              client: CKANAPIClient, stories: StoryStore) -> StandardResponse:
    start_time = time.time()
    try:
        response = StandardResponse(success=True, data=await run_tool(name, arguments, client, stories))
    except ValidationError as e:
        logger.info(f"Invalid arguments for {name}: {e}")
        response = StandardResponse(
            success=False,
            error={
                "type": ErrorType.INVALID_PARAMS.value,
                "message": "Validation failed",
                "fields": form_errors(e),
                "tool": name
            }
        )
    except Exception as e:
        logger.error(f"Error calling tool {name}: {str(e)}")
        response = StandardResponse(
            success=False,
            error={
                "type": classify_error(e).value,
                "message": str(e),
                "tool": name,
                "arguments": arguments
            }
        )
    response.metadata["execution_time_ms"] = int((time.time() - start_time) * 1000)
    return response


@server.call_tool()
async def handle_call_tool(name: str, arguments: Optional[Dict[str, Any]]) -> List[types.TextContent]:
    """Handle dashboard tool calls"""
    if not ckan_client or not story_store:
        response = StandardResponse(
            success=False,
            error={
                "type": ErrorType.CKAN_API_ERROR.value,
                "message": "Dashboard tools not initialized. Please set CKAN_URL environment variable."
            }
        )
    else:
        response = await call_dashboard_tool(name, arguments, ckan_client, story_store)
    return [types.TextContent(type="text", text=json.dumps(response.to_dict(), indent=2, default=str))]


@server.list_resources()
async def handle_list_resources() -> List[types.Resource]:
    return [
        types.Resource(
            uri="dashboard://config",
            name="Dashboard Configuration",
            description="CKAN connection and content directory in use",
            mimeType="application/json"
        )
    ]


@server.read_resource()
async def handle_read_resource(uri) -> str:
    if str(uri) == "dashboard://config":
        return json.dumps({
            "base_url": ckan_client.base_url if ckan_client else "Not configured",
            "api_key_configured": bool(ckan_client and ckan_client.api_key),
            "stories_dir": story_store.stories_dir if story_store else None,
        }, indent=2)
    raise ValueError(f"Unknown resource: {uri}")


async def main():
    """Run the dashboard tools over stdio"""
    global ckan_client, story_store

    settings = Settings.from_env()
    configure_logging(settings)
    story_store = StoryStore(settings.stories_dir)

    async with CKANAPIClient(settings.ckan_url, settings.ckan_api_key) as client:
        ckan_client = client
        async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
            await server.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name="ckan-dashboard",
                    server_version=API_VERSION,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                ),
            )


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
