"""
Compile MDX story source into previewable HTML.

Stories are markdown with embedded chart component tags. The markdown is
rendered with Python-Markdown; component tags are lifted out first, their
props evaluated as JSON-compatible literals, and re-inserted as ``<figure>``
elements carrying the props for the portal's chart runtime.
"""

import asyncio
import html
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Tuple

import markdown
import yaml

from dashboard_errors import DashboardError, MDXCompileError


logger = logging.getLogger("ckan-dashboard.mdx")

DATA_FETCH_CHART = "DataFetchChart"

DEFAULT_COMPONENTS: FrozenSet[str] = frozenset({
    "GenericBarChart",
    "GenericLineChart",
    "GenericPie",
    "GenericAreaChart",
    "MultiLineChart",
    "StackedBarChart",
    "ComboChart",
    "ScatterPlot",
    "RadarChartComponent",
    "HorizontalBarChart",
    "FunnelChartComponent",
    "TreemapChart",
    DATA_FETCH_CHART,
    # Emitted by the story builder
    "BarChart",
    "LineChart",
    "AreaChart",
    "StackedChart",
    "PieChart",
    "DonutChart",
    "ScatterChart",
    "RadarChart",
    "HorizontalChart",
    "FunnelChart",
    "Table",
    "FlatUiTable",
})

MARKDOWN_EXTENSIONS = ["fenced_code", "tables"]

COMPONENT_NAME = re.compile(r"[A-Z][A-Za-z0-9_.]*")
ATTRIBUTE_NAME = re.compile(r"[A-Za-z_][\w:-]*")
IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")
NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")

PREVIEW_NOTE = "This chart will fetch and render data when published on the portal"

CSVLoader = Callable[[str], Awaitable[Any]]


@dataclass
class ComponentCall:
    name: str
    props: Dict[str, Any]
    line: int
    children: str = ""
    data: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None

    @property
    def data_url(self) -> Optional[str]:
        return self.props.get("dataUrl") or self.props.get("resourceUrl")

    def to_dict(self) -> Dict[str, Any]:
        result = {"name": self.name, "props": self.props, "line": self.line}
        if self.data is not None:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class CompiledStory:
    frontmatter: Dict[str, Any]
    components: List[ComponentCall]
    template: str
    html: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frontmatter": self.frontmatter,
            "html": self.html,
            "components": [call.to_dict() for call in self.components],
        }


def parse_js_literal(expression: str, line: Optional[int] = None) -> Any:
    """Evaluate a JSX attribute expression restricted to JSON-like literals"""
    tokens: List[str] = []
    text = expression.strip()
    i, n = 0, len(text)

    def last_token() -> Optional[str]:
        return tokens[-1] if tokens else None

    while i < n:
        ch = text[i]
        if ch.isspace():
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            i = n if end == -1 else end + 1
        elif text.startswith("/*", i):
            end = text.find("*/", i + 2)
            if end == -1:
                raise MDXCompileError("Unterminated comment in expression", line)
            i = end + 2
        elif ch in "\"'":
            value, i = _read_string(text, i, line)
            tokens.append(json.dumps(value))
        elif ch == "`":
            raise MDXCompileError("Template literals are not supported in previews", line)
        elif ch in "]}":
            if last_token() == ",":
                tokens.pop()
            tokens.append(ch)
            i += 1
        elif ch in "[{,:":
            tokens.append(ch)
            i += 1
        else:
            number = NUMBER.match(text, i)
            if number:
                tokens.append(number.group())
                i = number.end()
                continue
            identifier = IDENTIFIER.match(text, i)
            if not identifier:
                raise MDXCompileError(f"Unexpected character {ch!r} in expression", line)
            word = identifier.group()
            i = identifier.end()
            rest = text[i:].lstrip()
            if rest.startswith(":") and last_token() in ("{", ","):
                tokens.append(json.dumps(word))
            elif word in ("true", "false", "null"):
                tokens.append(word)
            elif word == "undefined":
                tokens.append("null")
            else:
                raise MDXCompileError(f"Could not evaluate expression `{word}` in preview", line)

    try:
        return json.loads("".join(tokens))
    except ValueError as e:
        raise MDXCompileError(f"Unsupported expression: {expression.strip()[:40]}", line) from e


_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}


def _read_string(text: str, start: int, line: Optional[int]) -> Tuple[str, int]:
    quote = text[start]
    chars = []
    i = start + 1
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            chars.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if ch == quote:
            return "".join(chars), i + 1
        chars.append(ch)
        i += 1
    raise MDXCompileError("Unterminated string literal", line)


def split_frontmatter(source: str) -> Tuple[Dict[str, Any], str, int]:
    """Split a leading YAML block; returns (metadata, body, lines consumed)"""
    if not source.startswith("---"):
        return {}, source, 0
    first_break = source.find("\n")
    if first_break == -1 or source[:first_break].strip() != "---":
        return {}, source, 0

    match = re.search(r"^---[ \t]*$", source[first_break + 1:], re.MULTILINE)
    if not match:
        # A leading thematic break, not frontmatter
        return {}, source, 0

    block_end = first_break + 1 + match.start()
    body_start = first_break + 1 + match.end()
    block = source[first_break + 1:block_end]
    try:
        metadata = yaml.safe_load(block) or {}
    except yaml.YAMLError as e:
        raise MDXCompileError(f"Invalid frontmatter: {e}", 1) from e
    if not isinstance(metadata, dict):
        raise MDXCompileError("Frontmatter must be a mapping", 1)

    body = source[body_start:]
    if body.startswith("\n"):
        body = body[1:]
    consumed = source[:len(source) - len(body)].count("\n")
    return metadata, body, consumed


class _ComponentScanner:
    """Replace component tags outside code with placeholders"""

    def __init__(self, text: str, components: FrozenSet[str], line_offset: int = 0):
        self.text = text
        self.components = components
        self.line_offset = line_offset
        self.calls: List[ComponentCall] = []

    def line_at(self, pos: int) -> int:
        return self.line_offset + self.text.count("\n", 0, pos) + 1

    def run(self) -> str:
        text, out = self.text, []
        pos, n = 0, len(text)
        in_fence = False
        fence_marker = ""

        while pos < n:
            line_end = text.find("\n", pos)
            line_end = n if line_end == -1 else line_end + 1
            stripped = text[pos:line_end].lstrip()

            if in_fence or stripped.startswith(("```", "~~~")):
                marker = stripped[:3]
                if not in_fence:
                    in_fence, fence_marker = True, marker
                elif marker == fence_marker:
                    in_fence = False
                out.append(text[pos:line_end])
                pos = line_end
                continue

            # Scan one line, letting component tags span further lines
            while pos < line_end:
                ch = text[pos]
                if ch == "`":
                    close = text.find("`", pos + 1, line_end)
                    if close != -1:
                        out.append(text[pos:close + 1])
                        pos = close + 1
                        continue
                elif ch == "<" and COMPONENT_NAME.match(text, pos + 1):
                    call, end = self.parse_component(pos)
                    out.append(self.placeholder(len(self.calls)))
                    self.calls.append(call)
                    pos = end
                    if pos > line_end:
                        line_end = text.find("\n", pos)
                        line_end = n if line_end == -1 else line_end + 1
                    continue
                out.append(ch)
                pos += 1

        return "".join(out)

    @staticmethod
    def placeholder(index: int) -> str:
        return f"MDXCOMPONENT{index}X"

    def _skip_blank(self, pos: int, line: int) -> int:
        text = self.text
        while pos < len(text):
            if text[pos].isspace():
                pos += 1
            elif text.startswith("//", pos):
                end = text.find("\n", pos)
                pos = len(text) if end == -1 else end + 1
            elif text.startswith("/*", pos):
                end = text.find("*/", pos + 2)
                if end == -1:
                    raise MDXCompileError("Unterminated comment in component tag", line)
                pos = end + 2
            else:
                break
        return pos

    def _read_expression(self, pos: int, line: int) -> Tuple[str, int]:
        text, depth = self.text, 0
        i = pos
        while i < len(text):
            ch = text[i]
            if ch in "\"'`":
                closing = text.find(ch, i + 1)
                while closing != -1 and text[closing - 1] == "\\":
                    closing = text.find(ch, closing + 1)
                if closing == -1:
                    raise MDXCompileError("Unterminated string in expression", line)
                i = closing + 1
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[pos + 1:i], i + 1
            i += 1
        raise MDXCompileError("Unexpected end of file in expression", line)

    def parse_component(self, start: int) -> Tuple[ComponentCall, int]:
        text = self.text
        line = self.line_at(start)
        name = COMPONENT_NAME.match(text, start + 1).group()
        if name not in self.components:
            raise MDXCompileError(
                f"Expected component `{name}` to be defined: you likely forgot to import, pass, or provide it.",
                line,
            )

        props: Dict[str, Any] = {}
        pos = start + 1 + len(name)
        while True:
            pos = self._skip_blank(pos, line)
            if pos >= len(text):
                raise MDXCompileError(f"Unexpected end of file in component <{name}>", line)
            if text.startswith("/>", pos):
                return ComponentCall(name, props, line), pos + 2
            if text[pos] == ">":
                return self._read_children(name, props, line, pos + 1)
            if text[pos] == "{":
                raise MDXCompileError("Spread attributes are not supported in previews", line)

            attribute = ATTRIBUTE_NAME.match(text, pos)
            if not attribute:
                raise MDXCompileError(f"Unexpected character {text[pos]!r} in component <{name}>", line)
            key = attribute.group()
            pos = self._skip_blank(attribute.end(), line)
            if pos >= len(text) or text[pos] != "=":
                props[key] = True
                continue

            pos = self._skip_blank(pos + 1, line)
            if pos < len(text) and text[pos] in "\"'":
                quote = text[pos]
                end = text.find(quote, pos + 1)
                if end == -1:
                    raise MDXCompileError(f"Unterminated attribute value for `{key}`", line)
                props[key] = html.unescape(text[pos + 1:end])
                pos = end + 1
            elif pos < len(text) and text[pos] == "{":
                expression, pos = self._read_expression(pos, line)
                props[key] = parse_js_literal(expression, line)
            else:
                raise MDXCompileError(f"Missing value for attribute `{key}`", line)

    def _read_children(self, name: str, props: Dict[str, Any], line: int,
                       pos: int) -> Tuple[ComponentCall, int]:
        closing = re.compile(r"</\s*" + re.escape(name) + r"\s*>")
        match = closing.search(self.text, pos)
        if not match:
            raise MDXCompileError(f"Expected a closing tag for `<{name}>`", line)
        children = self.text[pos:match.start()].strip()
        return ComponentCall(name, props, line, children=children), match.end()


def _render_component(call: ComponentCall) -> str:
    props_attr = html.escape(json.dumps(call.props, ensure_ascii=False), quote=True)

    def attrs(cls: str) -> str:
        return f'class="{cls}" data-component="{html.escape(call.name)}" data-props="{props_attr}"'

    if call.error:
        return (
            f'<figure {attrs("mdx-component mdx-error")}>'
            f'<figcaption>{html.escape(call.error)}</figcaption></figure>'
        )

    inner = []
    if call.name == DATA_FETCH_CHART:
        chart_type = html.escape(str(call.props.get("chartType", "")))
        x_key = html.escape(str(call.props.get("xKey") or call.props.get("xAxisKey") or ""))
        y_key = html.escape(str(call.props.get("yKey") or call.props.get("yAxisKey") or ""))
        inner.append(
            f"<figcaption><strong>Type:</strong> {chart_type} • "
            f"<strong>X:</strong> {x_key} • <strong>Y:</strong> {y_key}</figcaption>"
        )
        if call.data is None:
            inner.append(f"<p>ℹ️ {PREVIEW_NOTE}</p>")
        cls = "mdx-component mdx-data-chart"
    else:
        title = call.props.get("title") or call.props.get("chartTitle")
        if title:
            inner.append(f"<figcaption>{html.escape(str(title))}</figcaption>")
        cls = "mdx-component"

    if call.children:
        inner.append(markdown.markdown(call.children, extensions=MARKDOWN_EXTENSIONS))

    data_attr = ""
    if call.data is not None:
        data_attr = f' data-rows="{html.escape(json.dumps(call.data, ensure_ascii=False), quote=True)}"'

    return f"<figure {attrs(cls)}{data_attr}>{''.join(inner)}</figure>"


def _fill_placeholders(template: str, calls: List[ComponentCall]) -> str:
    rendered = template
    for index, call in enumerate(calls):
        token = _ComponentScanner.placeholder(index)
        block = _render_component(call)
        rendered = rendered.replace(f"<p>{token}</p>", block).replace(token, block)
    return rendered


def compile_mdx(source: str, components: FrozenSet[str] = DEFAULT_COMPONENTS) -> CompiledStory:
    """Compile MDX source into HTML, raising MDXCompileError on bad input"""
    frontmatter, body, consumed = split_frontmatter(source)
    scanner = _ComponentScanner(body, components, line_offset=consumed)
    text = scanner.run()

    template = markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS)
    compiled = CompiledStory(frontmatter=frontmatter, components=scanner.calls, template=template)
    compiled.html = _fill_placeholders(template, compiled.components)
    return compiled


async def render_live(compiled: CompiledStory, loader: CSVLoader) -> CompiledStory:
    """Fetch the CSV behind every DataFetchChart and embed its rows"""
    charts = [call for call in compiled.components if call.name == DATA_FETCH_CHART and call.data_url]

    async def resolve(call: ComponentCall) -> None:
        try:
            csv_data = await loader(call.data_url)
        except DashboardError as e:
            logger.warning(f"Live preview failed for {call.data_url}: {e}")
            call.error = e.message
            return
        call.data = csv_data.rows
        if not call.data:
            call.error = "No data available"

    await asyncio.gather(*(resolve(call) for call in charts))
    compiled.html = _fill_placeholders(compiled.template, compiled.components)
    return compiled
