"""Block tree serialization: block list <-> comment-delimited markup

Every block is wrapped in structural comments carrying its name and the
attributes that are not recoverable from its HTML:

    <!-- wp:heading {"level":1} -->
    <h1 id="chapter-one">Chapter One</h1>
    <!-- /wp:heading -->

Blocks without HTML or children use a void delimiter (<!-- wp:name /-->).
"""

import html
import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

from bs4 import BeautifulSoup

from blockdoc.core.models import CORE_NAMESPACE, Block


DELIMITER_RE = re.compile(
    r'<!--\s+(?P<closer>/)?wp:(?P<namespace>[a-z][a-z0-9_-]*/)?(?P<name>[a-z][a-z0-9_-]*)'
    r'\s+(?P<attrs>\{.*?\}\s+)?(?P<void>/)?-->',
    re.DOTALL,
)

# Escapes keep attribute JSON from closing the comment or reading as markup.
_JSON_ESCAPES = {"--": "\\u002d\\u002d", "<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}


@dataclass(frozen=True)
class BlockKind:
    """HTML rendering and attribute sourcing for one block type."""
    sourced: tuple[str, ...]
    render: Callable[[dict[str, Any]], tuple[str, str]]    # attrs -> (opening html, closing html)
    source: Callable[[str], dict[str, Any]]                # own html -> sourced attrs


def _soup(text: str) -> BeautifulSoup:
    return BeautifulSoup(text, "html.parser")


def _inner(text: str, tag: str) -> dict[str, Any]:
    el = _soup(text).find(tag)
    return {"content": el.decode_contents().strip("\n")} if el is not None else {}


def _trim_newlines(text: str) -> str:
    """Drop the single newline the serializer puts on each side of a block body."""
    text = text[1:] if text.startswith("\n") else text
    return text[:-1] if text.endswith("\n") else text


def _wrapper(open_tag: str, close_tag: str) -> BlockKind:
    return BlockKind((), lambda attrs: (open_tag, close_tag), lambda text: {})


def _render_heading(attrs: dict[str, Any]) -> tuple[str, str]:
    level = attrs.get("level") or 2
    anchor = attrs.get("anchor")
    id_attr = f' id="{html.escape(anchor)}"' if anchor else ""
    return f'<h{level}{id_attr}>{attrs.get("content") or ""}</h{level}>', ""


def _source_heading(text: str) -> dict[str, Any]:
    el = _soup(text).find(re.compile(r'^h[1-6]$'))
    if el is None:
        return {}
    found = {"content": el.decode_contents()}
    if el.get("id"):
        found["anchor"] = el["id"]
    return found


def _render_image(attrs: dict[str, Any]) -> tuple[str, str]:
    src = html.escape(attrs.get("url") or "")
    alt = html.escape(attrs.get("alt") or "")
    return f'<figure class="wp-block-image"><img src="{src}" alt="{alt}"/>', "</figure>"


def _source_image(text: str) -> dict[str, Any]:
    img = _soup(text).find("img")
    if img is None:
        return {}
    found = {}
    if img.get("src"):
        found["url"] = img["src"]
    if img.get("alt"):
        found["alt"] = img["alt"]
    return found


def _render_cover(attrs: dict[str, Any]) -> tuple[str, str]:
    """Background image first, children inside the inner container."""
    url = attrs.get("url")
    img = ""
    if url:
        alt = html.escape(attrs.get("alt") or "")
        img = f'<img class="wp-block-cover__image-background" src="{html.escape(url)}" alt="{alt}"/>'
    return f'<div class="wp-block-cover">{img}<div class="wp-block-cover__inner-container">', "</div></div>"


def _render_list(attrs: dict[str, Any]) -> tuple[str, str]:
    tag = "ol" if attrs.get("ordered") else "ul"
    return f"<{tag}>", f"</{tag}>"


def _raw() -> BlockKind:
    return BlockKind(
        ("content",),
        lambda attrs: (attrs.get("content") or "", ""),
        lambda text: {"content": _trim_newlines(text)},
    )


BLOCK_KINDS: dict[str, BlockKind] = {
    "paragraph": BlockKind(("content",), lambda a: (f'<p>{a.get("content") or ""}</p>', ""), lambda t: _inner(t, "p")),
    "heading":   BlockKind(("content", "anchor"), _render_heading, _source_heading),
    "image":     BlockKind(("url", "alt"), _render_image, _source_image),
    "cover":     BlockKind(("url", "alt"), _render_cover, _source_image),
    "list":      BlockKind((), _render_list, lambda t: {}),
    "list-item": BlockKind(("content",), lambda a: (f'<li>{a.get("content") or ""}', "</li>"), lambda t: _inner(t, "li")),
    "quote":     _wrapper('<blockquote class="wp-block-quote">', "</blockquote>"),
    "group":     _wrapper('<div class="wp-block-group">', "</div>"),
    "columns":   _wrapper('<div class="wp-block-columns">', "</div>"),
    "column":    _wrapper('<div class="wp-block-column">', "</div>"),
    "html":      _raw(),
    "freeform":  _raw(),
}


def _encode_attrs(attrs: dict[str, Any]) -> str:
    text = json.dumps(attrs, separators=(",", ":"), ensure_ascii=False)
    for raw, escaped in _JSON_ESCAPES.items():
        text = text.replace(raw, escaped)
    return text


def _decode_attrs(text: str | None, name: str) -> dict[str, Any]:
    if not text:
        return {}
    try:
        attrs = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid attributes for block {name}: {e}") from e
    if not isinstance(attrs, dict):
        raise ValueError(f"Invalid attributes for block {name}: expected an object")
    return attrs


def serialize_block(block: Block) -> str:
    """Serialize one block and its children."""
    handler = BLOCK_KINDS.get(block.kind)
    sourced = handler.sourced if handler else ()
    comment_attrs = {
        k: v for k, v in block.attributes.items()
        if v is not None and k not in sourced
    }
    opener, closer = handler.render(block.attributes) if handler else ("", "")
    inner = "\n\n".join(serialize_block(c) for c in block.children)
    if inner:
        body = "\n".join(p for p in (opener, inner, closer) if p)
    else:
        body = opener + closer

    attrs_text = f" {_encode_attrs(comment_attrs)}" if comment_attrs else ""
    if not body:
        return f"<!-- wp:{block.kind}{attrs_text} /-->"
    return f"<!-- wp:{block.kind}{attrs_text} -->\n{body}\n<!-- /wp:{block.kind} -->"


def serialize_blocks(blocks: list[Block]) -> str:
    """Serialize a block list to markup, one blank line between top-level blocks."""
    return "\n\n".join(serialize_block(b) for b in blocks)


@dataclass
class _Frame:
    name: str
    attributes: dict[str, Any]
    children: list[Block] = field(default_factory=list)
    html: list[str] = field(default_factory=list)


def _finish(frame: _Frame) -> Block:
    attributes = dict(frame.attributes)
    handler = BLOCK_KINDS.get(frame.name.removeprefix(CORE_NAMESPACE))
    if handler is not None:
        attributes.update(handler.source("".join(frame.html)))
    return Block(name=frame.name, attributes=attributes, children=frame.children)


def parse_blocks(markup: str) -> list[Block]:
    """Parse delimited markup back into a block list.

    Non-whitespace text outside any delimiter becomes a core/freeform block.
    Raises ValueError on unbalanced delimiters or malformed attribute JSON.
    """
    blocks: list[Block] = []
    stack: list[_Frame] = []

    def _emit(block: Block) -> None:
        (stack[-1].children if stack else blocks).append(block)

    def _text(text: str) -> None:
        if stack:
            stack[-1].html.append(text)
        elif text.strip():
            blocks.append(Block(name=f"{CORE_NAMESPACE}freeform", attributes={"content": text.strip()}))

    pos = 0
    for m in DELIMITER_RE.finditer(markup):
        _text(markup[pos:m.start()])
        pos = m.end()
        name = (m["namespace"] or CORE_NAMESPACE) + m["name"]
        if m["closer"]:
            if not stack or stack[-1].name != name:
                raise ValueError(f"Unexpected closing delimiter for block {name}")
            _emit(_finish(stack.pop()))
            continue
        frame = _Frame(name, _decode_attrs(m["attrs"], name))
        if m["void"]:
            _emit(_finish(frame))
        else:
            stack.append(frame)
    _text(markup[pos:])

    if stack:
        raise ValueError(f"Unclosed block {stack[-1].name}")
    return blocks


def iter_blocks(blocks: list[Block]) -> Iterator[Block]:
    """Yield every block of the tree in document order (pre-order)."""
    for block in blocks:
        yield block
        yield from iter_blocks(block.children)


def block_text(block: Block) -> str:
    """Plain text of a block's content attribute, markup stripped."""
    content = block.attributes.get("content")
    if not content:
        return ""
    return " ".join(_soup(str(content)).get_text().split())
