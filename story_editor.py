import re
from typing import Optional, Tuple


NUMBERED_ITEM = re.compile(r"^(\s*)(\d+)\.\s")
BULLET_ITEM = re.compile(r"^(\s*)([-*])\s")

Edit = Tuple[str, int]


def _clamp(content: str, position: int) -> int:
    return max(0, min(position, len(content)))


def insert_markdown(content: str, start: int, end: int, before: str,
                    after: str = "", placeholder: str = "") -> Edit:
    """Wrap the selection (or a placeholder) in markdown syntax"""
    start, end = _clamp(content, start), _clamp(content, end)
    if end < start:
        start, end = end, start
    selected = content[start:end] or placeholder
    insert_text = before + selected + after
    return content[:start] + insert_text + content[end:], start + len(insert_text)


def insert_snippet(content: str, position: int, code: str) -> Edit:
    """Insert a generated chart snippet at the cursor on its own paragraph"""
    position = _clamp(content, position)
    insert_text = "\n\n" + code + "\n\n"
    return content[:position] + insert_text + content[position:], position + len(insert_text)


def append_template(content: str, code: str) -> str:
    return content + "\n\n" + code.strip() + "\n\n"


def continue_list(content: str, cursor: int) -> Optional[Edit]:
    """Continue a numbered or bullet list when Enter is pressed at the cursor"""
    cursor = _clamp(content, cursor)
    current_line = content[:cursor].split("\n")[-1]

    numbered = NUMBERED_ITEM.match(current_line)
    if numbered:
        indent, number = numbered.group(1), int(numbered.group(2))
        insert_text = f"\n{indent}{number + 1}. "
    else:
        bullet = BULLET_ITEM.match(current_line)
        if not bullet:
            return None
        insert_text = f"\n{bullet.group(1)}{bullet.group(2)} "

    return content[:cursor] + insert_text + content[cursor:], cursor + len(insert_text)
