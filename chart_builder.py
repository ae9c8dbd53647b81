"""
Map CSV columns onto chart snippets that can be pasted into a story.

The generated code targets the portal's ``DataFetchChart`` component, which
loads the CSV at render time, so only the resource URL and column keys end
up in the story text.
"""

import html
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dashboard_errors import ChartConfigError


CHART_TYPES = [
    {"id": "bar", "name": "Bar Chart", "description": "Compare categories"},
    {"id": "line", "name": "Line Chart", "description": "Show trends over time"},
    {"id": "pie", "name": "Pie Chart", "description": "Show proportions"},
    {"id": "area", "name": "Area Chart", "description": "Filled line chart"},
    {"id": "multiline", "name": "Multi-Line", "description": "Compare multiple trends"},
    {"id": "scatter", "name": "Scatter Plot", "description": "Show correlations"},
]

CHART_TYPE_IDS = [chart["id"] for chart in CHART_TYPES]

PIE_COLORS = ["#4CAF50", "#2196F3", "#FF9800", "#9C27B0", "#F44336"]
MULTILINE_COLORS = ["#4CAF50", "#FF5722", "#2196F3", "#FF9800"]


@dataclass
class ChartSpec:
    chart_type: str
    resource_url: str
    x_key: str = ""
    y_key: str = ""
    y_keys: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict) -> "ChartSpec":
        return cls(
            chart_type=data.get("chartType") or data.get("chart_type") or "bar",
            resource_url=data.get("resourceUrl") or data.get("resource_url") or "",
            x_key=data.get("xKey") or data.get("x_key") or "",
            y_key=data.get("yKey") or data.get("y_key") or "",
            y_keys=list(data.get("yKeys") or data.get("y_keys") or []),
        )

    def validate(self, columns: Optional[List[str]] = None) -> None:
        if self.chart_type not in CHART_TYPE_IDS:
            raise ChartConfigError(f"Unknown chart type: {self.chart_type}")
        if not self.x_key or (not self.y_key and not self.y_keys):
            raise ChartConfigError("Please select both X and Y axes")
        if not self.resource_url:
            raise ChartConfigError("A resource URL is required")
        if columns is not None:
            for key in [self.x_key, self.y_key, *self.y_keys]:
                if key and key not in columns:
                    raise ChartConfigError(f"Column not found in resource: {key}")


def _attr(value: str) -> str:
    # compile_mdx unescapes entities in quoted attribute values
    return html.escape(str(value), quote=True)


def _js_string(value: str) -> str:
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


def _single_series(spec: ChartSpec, color: str, named: bool = False) -> str:
    lines = [
        "<DataFetchChart",
        f'  dataUrl="{_attr(spec.resource_url)}"',
        f'  chartType="{spec.chart_type}"',
        f'  xKey="{_attr(spec.x_key)}"',
        f'  yKey="{_attr(spec.y_key)}"',
    ]
    if named:
        lines.append(f'  name="{_attr(spec.y_key)}"')
    lines.append(f'  color="{color}"')
    lines.append("/>")
    return "\n".join(lines)


def generate_chart_code(spec: ChartSpec, columns: Optional[List[str]] = None) -> str:
    """Build the DataFetchChart snippet for a column mapping"""
    spec.validate(columns)

    if spec.chart_type == "bar":
        return _single_series(spec, "#0288D1")
    if spec.chart_type == "line":
        return _single_series(spec, "#0288D1", named=True)
    if spec.chart_type == "area":
        return _single_series(spec, "#4CAF50")
    if spec.chart_type == "scatter":
        return _single_series(spec, "#9C27B0", named=True)

    if spec.chart_type == "pie":
        colors = ", ".join(f'"{color}"' for color in PIE_COLORS)
        return "\n".join([
            "<DataFetchChart",
            f'  dataUrl="{_attr(spec.resource_url)}"',
            '  chartType="pie"',
            f'  xKey="{_attr(spec.x_key)}"',
            f'  yKey="{_attr(spec.y_key)}"',
            f"  colors={{[{colors}]}}",
            "/>",
        ])

    columns_for_lines = spec.y_keys or [spec.y_key]
    series = ",\n".join(
        f"    {{ key: {_js_string(col)}, name: {_js_string(col)}, color: '{MULTILINE_COLORS[idx % len(MULTILINE_COLORS)]}' }}"
        for idx, col in enumerate(columns_for_lines)
    )
    return "\n".join([
        "<DataFetchChart",
        f'  dataUrl="{_attr(spec.resource_url)}"',
        '  chartType="multiline"',
        f'  xKey="{_attr(spec.x_key)}"',
        "  lines={[",
        series,
        "  ]}",
        "/>",
    ])


def describe_mapping(spec: ChartSpec) -> str:
    name = next((chart["name"] for chart in CHART_TYPES if chart["id"] == spec.chart_type), spec.chart_type)
    values = ", ".join(spec.y_keys) if spec.chart_type == "multiline" and spec.y_keys else spec.y_key
    return f"{name} with {spec.x_key} vs {values}"


CHART_TEMPLATES = [
    {
        "name": "Bar Chart",
        "description": "Compare categories side by side",
        "code": """
<GenericBarChart
  data={[
    { name: 'Jan', value: 400 },
    { name: 'Feb', value: 300 },
    { name: 'Mar', value: 500 }
  ]}
  xKey="name"
  series={[{ key: 'value', name: 'Sales', color: '#0288D1' }]}
/>
""",
    },
    {
        "name": "Line Chart",
        "description": "Show trends over time",
        "code": """
<GenericLineChart
  data={[
    { month: 'Jan', sales: 400 },
    { month: 'Feb', sales: 300 },
    { month: 'Mar', sales: 500 }
  ]}
  xKey="month"
  yKey="sales"
  name="Revenue"
  color="#0288D1"
/>
""",
    },
    {
        "name": "Pie Chart",
        "description": "Show proportions and percentages",
        "code": """
<GenericPie
  data={[
    { name: 'Category A', value: 400 },
    { name: 'Category B', value: 300 },
    { name: 'Category C', value: 200 }
  ]}
  nameKey="name"
  valueKey="value"
  colors={["#4CAF50", "#2196F3", "#FF9800"]}
/>
""",
    },
    {
        "name": "Area Chart",
        "description": "Filled line chart for trends",
        "code": """
<GenericAreaChart
  data={[
    { month: 'Jan', value: 400 },
    { month: 'Feb', value: 300 },
    { month: 'Mar', value: 500 }
  ]}
  xKey="month"
  series={[{ key: 'value', name: 'Growth', color: '#4CAF50' }]}
/>
""",
    },
    {
        "name": "Multi-Line Chart",
        "description": "Compare multiple trends",
        "code": """
<MultiLineChart
  data={[
    { month: 'Jan', sales: 400, costs: 240 },
    { month: 'Feb', sales: 300, costs: 220 },
    { month: 'Mar', sales: 500, costs: 280 }
  ]}
  xKey="month"
  lines={[
    { key: 'sales', name: 'Sales', color: '#4CAF50' },
    { key: 'costs', name: 'Costs', color: '#FF5722' }
  ]}
/>
""",
    },
    {
        "name": "Stacked Bar Chart",
        "description": "Show composition over categories",
        "code": """
<StackedBarChart
  data={[
    { category: 'Q1', product_a: 400, product_b: 240 },
    { category: 'Q2', product_a: 300, product_b: 220 },
    { category: 'Q3', product_a: 500, product_b: 280 }
  ]}
  xKey="category"
  series={[
    { key: 'product_a', name: 'Product A', color: '#0288D1' },
    { key: 'product_b', name: 'Product B', color: '#FF9800' }
  ]}
/>
""",
    },
    {
        "name": "Combo Chart",
        "description": "Combine bars and lines",
        "code": """
<ComboChart
  data={[
    { month: 'Jan', revenue: 400, growth: 20 },
    { month: 'Feb', revenue: 300, growth: 15 },
    { month: 'Mar', revenue: 500, growth: 25 }
  ]}
  xKey="month"
  bars={[{ key: 'revenue', name: 'Revenue', color: '#0288D1' }]}
  lines={[{ key: 'growth', name: 'Growth %', color: '#FF5722' }]}
/>
""",
    },
    {
        "name": "Scatter Plot",
        "description": "Show correlation between variables",
        "code": """
<ScatterPlot
  data={[
    { x: 100, y: 200 },
    { x: 120, y: 180 },
    { x: 170, y: 240 }
  ]}
  xKey="x"
  yKey="y"
  name="Data Points"
  color="#9C27B0"
/>
""",
    },
    {
        "name": "Radar Chart",
        "description": "Compare multiple variables",
        "code": """
<RadarChartComponent
  data={[
    { metric: 'Speed', value: 120, benchmark: 110 },
    { metric: 'Quality', value: 98, benchmark: 95 },
    { metric: 'Cost', value: 86, benchmark: 90 }
  ]}
  categories="metric"
  series={[
    { key: 'value', name: 'Actual', color: '#0288D1' },
    { key: 'benchmark', name: 'Benchmark', color: '#FF9800' }
  ]}
/>
""",
    },
    {
        "name": "Horizontal Bar",
        "description": "Bars displayed horizontally",
        "code": """
<HorizontalBarChart
  data={[
    { name: 'Product A', sales: 400 },
    { name: 'Product B', sales: 300 },
    { name: 'Product C', sales: 500 }
  ]}
  yKey="name"
  series={[{ key: 'sales', name: 'Sales', color: '#4CAF50' }]}
/>
""",
    },
    {
        "name": "Funnel Chart",
        "description": "Show conversion stages",
        "code": """
<FunnelChartComponent
  data={[
    { stage: 'Visits', value: 1000 },
    { stage: 'Signups', value: 500 },
    { stage: 'Purchases', value: 200 }
  ]}
  nameKey="stage"
  valueKey="value"
/>
""",
    },
    {
        "name": "Treemap",
        "description": "Show hierarchical data",
        "code": """
<TreemapChart
  data={[
    { name: 'Category A', size: 400 },
    { name: 'Category B', size: 300 },
    { name: 'Category C', size: 200 }
  ]}
  nameKey="name"
  sizeKey="size"
  colors={["#8889DD", "#9597E4", "#8DC77B"]}
/>
""",
    },
]


def get_template(name: str) -> Dict[str, str]:
    for template in CHART_TEMPLATES:
        if template["name"].lower() == name.lower():
            return template
    raise ChartConfigError(f"Unknown chart template: {name}")
