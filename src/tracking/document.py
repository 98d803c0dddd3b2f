"""
Host document model: the page a map widget is embedded in.

Just enough of a DOM for the map view to work against: an element tree with
inline styles and text, script tags with load/error events, a globals
namespace the widget script publishes its API into, and child-list mutation
observers.
"""

import logging
from typing import Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def parse_style(text: str) -> Dict[str, str]:
    """Parse an inline style string ('a: b; c: d') into a dict."""
    style = {}
    for decl in (text or "").split(";"):
        if ":" not in decl:
            continue
        prop, value = decl.split(":", 1)
        style[prop.strip().lower()] = value.strip()
    return style


class Element:
    def __init__(
        self,
        tag: str,
        attrs: Optional[Dict[str, str]] = None,
        style: Optional[Dict[str, str]] = None,
        text: str = "",
    ):
        self.tag = tag.lower()
        self.attrs = dict(attrs or {})
        self.style = dict(style or {})
        self.text = text
        self.children: List["Element"] = []
        self.parent: Optional["Element"] = None
        self.document: Optional["HostDocument"] = None
        self._listeners: Dict[str, List[tuple]] = {}

    def __repr__(self):
        ident = self.attrs.get("id") or self.attrs.get("src") or ""
        return f"<{self.tag} {ident}>".replace(" >", ">")

    @property
    def id(self) -> Optional[str]:
        return self.attrs.get("id")

    @property
    def style_text(self) -> str:
        return "; ".join(f"{k}: {v}" for k, v in self.style.items())

    @property
    def text_content(self) -> str:
        return self.text + "".join(child.text_content for child in self.children)

    @property
    def hidden(self) -> bool:
        return self.style.get("display") == "none"

    def append(self, child: "Element") -> "Element":
        if child.parent is not None:
            child.parent.remove(child)
        child.parent = self
        self.children.append(child)
        child._attach(self.document)
        if self.document is not None:
            self.document._notify([child])
        return child

    def remove(self, child: "Element") -> None:
        if child in self.children:
            self.children.remove(child)
            child.parent = None
            child._attach(None)
            if self.document is not None:
                self.document._notify([])

    def _attach(self, document: Optional["HostDocument"]) -> None:
        for el in self.iter():
            el.document = document

    def iter(self) -> Iterator["Element"]:
        yield self
        for child in list(self.children):
            yield from child.iter()

    def add_listener(self, event: str, callback: Callable[["Element"], None], once: bool = False) -> None:
        self._listeners.setdefault(event, []).append((callback, once))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    def dispatch(self, event: str) -> None:
        listeners = self._listeners.get(event, [])
        self._listeners[event] = [(cb, once) for cb, once in listeners if not once]
        for callback, _ in listeners:
            callback(self)


class MutationObserver:
    """Handle for a document child-list observer."""

    def __init__(self, document: "HostDocument", callback: Callable[[List[Element]], None]):
        self._document = document
        self._callback = callback
        self.connected = True

    def notify(self, added: List[Element]) -> None:
        if self.connected:
            self._callback(added)

    def disconnect(self) -> None:
        if self.connected:
            self.connected = False
            self._document._observers.remove(self)


class HostDocument:
    """
    The page hosting the map widget.

    Usage:
        doc = HostDocument()
        container = doc.body.append(Element("div", {"id": "map"}))
        observer = doc.observe(lambda added: ...)
    """

    def __init__(self):
        self.globals: Dict[str, object] = {}
        self.head = Element("head")
        self.body = Element("body")
        self.head.document = self
        self.body.document = self
        self._observers: List[MutationObserver] = []

    def iter(self) -> Iterator[Element]:
        yield from self.head.iter()
        yield from self.body.iter()

    def get_element_by_id(self, element_id: str) -> Optional[Element]:
        for el in self.iter():
            if el.id == element_id:
                return el
        return None

    def find_script(self, src_fragment: str) -> Optional[Element]:
        """First script tag whose src contains `src_fragment`."""
        for el in self.iter():
            if el.tag == "script" and src_fragment in el.attrs.get("src", ""):
                return el
        return None

    def script_count(self, src_fragment: str) -> int:
        return sum(
            1 for el in self.iter()
            if el.tag == "script" and src_fragment in el.attrs.get("src", "")
        )

    def observe(self, callback: Callable[[List[Element]], None]) -> MutationObserver:
        observer = MutationObserver(self, callback)
        self._observers.append(observer)
        return observer

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def _notify(self, added: List[Element]) -> None:
        for observer in list(self._observers):
            try:
                observer.notify(added)
            except Exception:
                logger.exception("Mutation observer failed")
