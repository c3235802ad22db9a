"""
Screen Context Providers
------------------------
Sources of the "current screen" observation appended to session history.

- StaticScreenProvider: fixed or sequenced screens (tests, dry runs)
- UiDumpScreenProvider: parses `uiautomator dump` output over adb
"""

from typing import List, Optional, Sequence, Union
import logging
import re
import xml.etree.ElementTree as ET

from .interfaces import ScreenElement, ScreenProviderError


MAX_DEPTH = 15
MAX_TEXT_LENGTH = 50

_BOUNDS_RE = re.compile(r"\[(-?\d+),(-?\d+)\]\[(-?\d+),(-?\d+)\]")

ScreenContext = Union[str, List[ScreenElement]]


class StaticScreenProvider:
    """
    Returns the given screens in order, repeating the last one.

    Exceptions in the sequence are raised at their turn.
    """

    def __init__(self, screens: Optional[Sequence[Union[ScreenContext, BaseException]]] = None):
        self._screens = list(screens) if screens else ["Home screen"]
        self.reads = 0

    def current_elements(self) -> ScreenContext:
        item = self._screens[min(self.reads, len(self._screens) - 1)]
        self.reads += 1
        if isinstance(item, BaseException):
            raise item
        return item


def parse_bounds(value: str) -> Optional[tuple]:
    match = _BOUNDS_RE.fullmatch(value.strip()) if value else None
    if not match:
        return None
    return tuple(int(g) for g in match.groups())


def parse_ui_dump(xml_text: str) -> List[ScreenElement]:
    """
    Extract reportable elements from a uiautomator XML dump.

    Keeps visible nodes that have text (or a content description), are
    clickable or are editable; stops descending below depth 15; truncates
    text to 50 characters.
    """
    start, end = xml_text.find("<"), xml_text.rfind(">")
    if start == -1 or end == -1:
        raise ScreenProviderError("UI dump contains no XML")

    try:
        root = ET.fromstring(xml_text[start:end + 1])
    except ET.ParseError as e:
        raise ScreenProviderError(f"Invalid UI dump: {e}")

    elements: List[ScreenElement] = []
    top_nodes = list(root) if root.tag == "hierarchy" else [root]
    for node in top_nodes:
        _extract(node, elements, depth=0)
    return elements


def _extract(node: ET.Element, elements: List[ScreenElement], depth: int) -> None:
    if depth > MAX_DEPTH:
        return

    if node.tag == "node":
        bounds = parse_bounds(node.get("bounds", ""))
        text = node.get("text") or node.get("content-desc") or ""
        class_name = (node.get("class") or "View").rsplit(".", 1)[-1]
        clickable = node.get("clickable") == "true"
        editable = "EditText" in class_name
        visible = bounds is not None and bounds[2] > bounds[0] and bounds[3] > bounds[1]

        if visible and (text or clickable or editable):
            elements.append(ScreenElement(
                class_name=class_name,
                text=text[:MAX_TEXT_LENGTH],
                bounds=bounds,
                clickable=clickable,
                editable=editable,
                resource_id=node.get("resource-id") or None,
            ))

    for child in node:
        _extract(child, elements, depth + 1)


class UiDumpScreenProvider:
    """
    Reads the screen through `adb shell uiautomator dump`.

    `channel` is a ShellChannel (or anything with the same run()).
    """

    DUMP_PATH = "/sdcard/window_dump.xml"

    def __init__(self, channel, wrapper: Optional[str] = None):
        self.channel = channel
        self.wrapper = wrapper
        self._logger = logging.getLogger("droidpilot.screen")

    def current_elements(self) -> List[ScreenElement]:
        dump = self.channel.run(["uiautomator", "dump", self.DUMP_PATH], wrapper=self.wrapper)
        if not dump.success:
            raise ScreenProviderError(f"Unable to read screen content: {dump.error}")

        content = self.channel.run(["cat", self.DUMP_PATH], wrapper=self.wrapper)
        if not content.success:
            raise ScreenProviderError(f"Unable to read screen content: {content.error}")

        elements = parse_ui_dump(content.output or "")
        self._logger.debug(f"Read {len(elements)} screen elements")
        return elements
