"""
Serialize a story-builder layout (metadata plus positioned components) into
MDX source.
"""

import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Union


CHART_COMPONENTS = {
    "bar-chart": ("BarChart", "bar"),
    "line-chart": ("LineChart", "line"),
    "area-chart": ("AreaChart", "area"),
    "multi-line-chart": ("MultiLineChart", "multiline"),
    "stacked-chart": ("StackedChart", "stacked"),
    "combo-chart": ("ComboChart", "combo"),
    "pie-chart": ("PieChart", "pie"),
    "donut-chart": ("DonutChart", "donut"),
    "scatter-chart": ("ScatterChart", "scatter"),
    "radar-chart": ("RadarChart", "radar"),
    "horizontal-chart": ("HorizontalChart", "horizontal"),
    "funnel-chart": ("FunnelChart", "funnel"),
    "treemap-chart": ("TreemapChart", "treemap"),
}

TREND_ICONS = {"up": "↑", "down": "↓"}


def _iso(value: Union[str, datetime, None]) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class MDXGenerator:
    """Turns story builder state into an MDX document"""

    def generate(self, story: Dict[str, Any]) -> str:
        frontmatter = self.generate_frontmatter(story.get("metadata") or {})
        components = sorted(
            story.get("components") or [],
            key=lambda comp: (comp.get("position", {}).get("row", 0), comp.get("position", {}).get("col", 0)),
        )
        body = "\n\n".join(filter(None, (self.generate_component(comp) for comp in components)))
        return f"---\n{frontmatter}\n---\n\n{body}"

    def generate_frontmatter(self, metadata: Dict[str, Any]) -> str:
        lines: List[str] = [f'title: "{metadata.get("title", "")}"']

        if metadata.get("description"):
            lines.append(f'description: "{metadata["description"]}"')
        if metadata.get("author"):
            lines.append(f'author: "{metadata["author"]}"')
        if metadata.get("tags"):
            lines.append("tags:")
            lines.extend(f'  - "{tag}"' for tag in metadata["tags"])
        if metadata.get("coverImage"):
            lines.append(f'coverImage: "{metadata["coverImage"]}"')

        published = _iso(metadata.get("publishedAt"))
        if published:
            lines.append(f'publishedAt: "{published}"')

        now = datetime.now().isoformat()
        lines.append(f'createdAt: "{_iso(metadata.get("createdAt")) or now}"')
        lines.append(f'updatedAt: "{_iso(metadata.get("updatedAt")) or now}"')
        return "\n".join(lines)

    def generate_component(self, component: Dict[str, Any]) -> str:
        kind = component.get("type")
        config = component.get("config") or {}

        if kind == "text":
            return config.get("content", "")
        if kind == "heading":
            return f"{'#' * int(config.get('level', 1))} {config.get('text', '')}"
        if kind == "divider":
            return "\n---\n"
        if kind in CHART_COMPONENTS:
            return self.generate_chart(kind, config)
        if kind == "table":
            return self.generate_table(config)
        if kind == "metric":
            return self.generate_metric(config)
        return ""

    def generate_chart(self, kind: str, config: Dict[str, Any]) -> str:
        data_source = config.get("dataSource") or {}
        if data_source.get("type") == "dataset" and data_source.get("url"):
            return self._data_fetch_chart(kind, config)
        if data_source.get("type") == "inline" and data_source.get("data"):
            return self._inline_chart(kind, config)
        return ""

    def _data_fetch_chart(self, kind: str, config: Dict[str, Any]) -> str:
        data_source = config["dataSource"]
        axes = config.get("axes") or {}
        x_axis, y_axis = axes.get("xAxis") or {}, axes.get("yAxis") or {}
        styling = config.get("styling") or {}

        props = [
            f'chartType="{CHART_COMPONENTS[kind][1]}"',
            f'resourceUrl="{data_source["url"]}"',
            f'xAxisKey="{x_axis.get("column", "")}"',
            f'yAxisKey="{y_axis.get("column", "")}"',
        ]
        if styling.get("title"):
            props.append(f'chartTitle="{styling["title"]}"')
        if x_axis.get("label"):
            props.append(f'xAxisLabel="{x_axis["label"]}"')
        if y_axis.get("label"):
            props.append(f'yAxisLabel="{y_axis["label"]}"')
        if styling.get("height"):
            props.append(f'height={{{styling["height"]}}}')
        if data_source.get("datasetTitle"):
            props.append(f'// Dataset: {data_source["datasetTitle"]}')
        if data_source.get("resourceName"):
            props.append(f'// Resource: {data_source["resourceName"]}')

        return "<DataFetchChart\n  " + "\n  ".join(props) + "\n/>"

    def _inline_chart(self, kind: str, config: Dict[str, Any]) -> str:
        data_source = config["dataSource"]
        axes = config.get("axes") or {}
        styling = config.get("styling") or {}

        data = "\n".join(
            line if i == 0 else f"  {line}"
            for i, line in enumerate(json.dumps(data_source["data"], indent=2).split("\n"))
        )
        props = [
            f"data={{{data}}}",
            f'xKey="{(axes.get("xAxis") or {}).get("column", "")}"',
            f'yKey="{(axes.get("yAxis") or {}).get("column", "")}"',
        ]
        if styling.get("title"):
            props.append(f'title="{styling["title"]}"')
        if styling.get("height"):
            props.append(f'height={{{styling["height"]}}}')
        if styling.get("colors"):
            props.append(f"colors={{{json.dumps(styling['colors'])}}}")

        return f"<{CHART_COMPONENTS[kind][0]}\n  " + "\n  ".join(props) + "\n/>"

    def generate_table(self, config: Dict[str, Any]) -> str:
        data_source = config.get("dataSource") or {}
        columns = [
            {"key": col.get("id"), "name": col.get("name"), "type": col.get("type")}
            for col in config.get("columns") or [] if col.get("visible")
        ]

        if data_source.get("type") == "inline" and data_source.get("data"):
            data = json.dumps(data_source["data"], indent=2)
            return f"<Table\n  data={{{data}}}\n  columns={{{json.dumps(columns, indent=2)}}}\n/>"
        if data_source.get("type") == "dataset" and data_source.get("url"):
            return f'<FlatUiTable url="{data_source["url"]}" />'
        return ""

    def generate_metric(self, config: Dict[str, Any]) -> str:
        lines = [f"### {config.get('label', '')}", f"**{config.get('value', '')}{config.get('unit') or ''}**"]
        trend = config.get("trend")
        if trend:
            icon = TREND_ICONS.get(trend.get("direction"), "→")
            lines.append(f"{icon} {trend.get('value')}% {trend.get('label') or ''}")
        return "\n\n".join(lines)


mdx_generator = MDXGenerator()
