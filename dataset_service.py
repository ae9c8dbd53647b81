import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from ckan_client import CKANAPIClient
from dashboard_errors import CKANAPIError, CKANConnectionError, DashboardError
from dataset_forms import DatasetForm, ResourceDraft


logger = logging.getLogger("ckan-dashboard.datasets")

NAME_IN_USE_MESSAGE = "This dataset name is already in use. Please choose another name."


def _is_name_in_use(error: CKANAPIError) -> bool:
    if "That URL is already in use" in error.message:
        return True
    # CKAN validation errors carry field messages next to the message
    return any("That URL is already in use" in str(value) for value in error.error.values())


async def create_dataset(client: CKANAPIClient, form: DatasetForm,
                         resources: Sequence[ResourceDraft] = ()) -> Dict[str, Any]:
    """Create a dataset then attach its resources one by one"""
    try:
        dataset = await client.create_dataset(form.to_ckan_payload())
    except CKANAPIError as e:
        if _is_name_in_use(e):
            raise DashboardError(NAME_IN_USE_MESSAGE) from e
        raise

    logger.info(f"Created dataset {dataset.get('name')} ({dataset.get('id')})")
    created_resources = []
    for resource in resources:
        try:
            if resource.resource_type == "file":
                created = await client.upload_resource(
                    dataset["id"], resource.name, resource.filename, resource.content,
                    content_type=resource.content_type, description=resource.description,
                    format=resource.format,
                )
            else:
                created = await client.create_resource(resource.to_ckan_payload(dataset["id"]))
        except (CKANAPIError, CKANConnectionError) as e:
            logger.error(f"Failed to create resource {resource.name}: {e}")
            raise DashboardError(f"Failed to create resource: {resource.name}") from e
        created_resources.append(created)

    dataset["resources"] = list(dataset.get("resources") or []) + created_resources
    return dataset


async def update_dataset(client: CKANAPIClient, name: str, form: DatasetForm) -> Dict[str, Any]:
    return await client.patch_dataset(form.to_ckan_payload(id=name))


async def delete_dataset(client: CKANAPIClient, id: str) -> None:
    await client.delete_dataset(id)
    logger.info(f"Deleted dataset {id}")


async def fetch_datasets(client: CKANAPIClient, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """List dataset names then load each dataset's details in parallel"""
    names = await client.list_datasets()
    if limit is not None:
        names = names[:limit]

    results = await asyncio.gather(*(client.get_dataset(name) for name in names),
                                   return_exceptions=True)
    datasets = []
    for name, result in zip(names, results):
        if isinstance(result, BaseException):
            if not isinstance(result, (CKANAPIError, CKANConnectionError)):
                raise result
            logger.warning(f"Skipping dataset {name}: {result}")
            continue
        datasets.append(result)
    return datasets


def filter_datasets(datasets: List[Dict[str, Any]], query: str = "",
                    organization: str = "") -> List[Dict[str, Any]]:
    filtered = datasets
    if query:
        needle = query.lower()
        filtered = [
            ds for ds in filtered
            if needle in (ds.get("title") or "").lower()
            or needle in (ds.get("name") or "").lower()
            or needle in (ds.get("notes") or "").lower()
        ]
    if organization:
        filtered = [ds for ds in filtered if (ds.get("organization") or {}).get("name") == organization]
    return filtered


def csv_resources(dataset: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [res for res in dataset.get("resources") or [] if (res.get("format") or "").lower() == "csv"]


async def dashboard_summary(client: CKANAPIClient, sample_size: int = 10) -> Dict[str, Any]:
    """Counts shown on the dashboard landing page"""
    names = await client.list_datasets()
    results = await asyncio.gather(*(client.get_dataset(name) for name in names[:sample_size]),
                                   return_exceptions=True)
    datasets = [ds for ds in results if isinstance(ds, dict)]

    return {
        "totalDatasets": len(names),
        "publicDatasets": sum(1 for ds in datasets if not ds.get("private")),
        "privateDatasets": sum(1 for ds in datasets if ds.get("private")),
        "recentDatasets": datasets[:5],
    }


async def portal_stats(client: CKANAPIClient) -> Dict[str, Any]:
    names = await client.list_datasets()

    active_users = None
    try:
        active_users = len(await client.list_users())
    except CKANAPIError as e:
        logger.info(f"Could not fetch users (may need admin permission): {e}")

    return {"totalDatasets": len(names), "activeUsers": active_users}


def format_relative_date(value: str, now: Optional[datetime] = None) -> str:
    """Render an ISO timestamp as 'Today', 'N days ago' or a plain date"""
    date = datetime.fromisoformat(value)
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    diff_days = (now - date).days
    if diff_days <= 0:
        return "Today"
    if diff_days == 1:
        return "1 day ago"
    if diff_days < 7:
        return f"{diff_days} days ago"
    return date.date().isoformat()
