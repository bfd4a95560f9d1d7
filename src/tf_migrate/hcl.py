"""Structural model of HCL configuration files.

Only the shape the migration engine manipulates is modelled: a body is an
ordered list of attributes, blocks and trivia (comment lines and blank lines).
Attribute values are a tagged variant:

- RawExpression: the exact source text of an expression. References such as
  ``var.x`` or ``each.value.y`` are only ever copied, never re-derived.
- Literal: a Python scalar set by a rule, rendered as an HCL literal.
- ObjectExpression / TupleExpression: structured values built by the rewrite
  toolkit; they are rendered at the indentation of the attribute that holds
  them.

Serialization is canonical (two-space indentation, aligned ``=`` across runs
of attributes) so ``format_body(parse(format_body(body)))`` always equals
``format_body(body)``.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Union

from .exceptions import ParseError

INDENT = "  "

IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_-]*")
_HEREDOC_RE = re.compile(r"<<(-?)([A-Za-z_][A-Za-z0-9_-]*)[ \t]*\n")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][+-]?\d+)?")
_INTERPOLATION_RE = re.compile(r"(?<![$%])[$%]\{")


class _NotLiteral:
    def __repr__(self) -> str:
        return "NOT_LITERAL"


NOT_LITERAL: Any = _NotLiteral()


# Expressions


@dataclass
class RawExpression:
    """An expression kept as its exact source text."""

    text: str

    def render(self, indent: str = "") -> str:
        if "\n" not in self.text or _HEREDOC_RE.search(self.text):
            return self.text
        first, *rest = self.text.split("\n")
        return "\n".join([first, *(indent + line if line else line for line in rest)])


@dataclass
class Literal:
    """A scalar value created by a rule."""

    value: str | int | float | bool | None

    def render(self, indent: str = "") -> str:  # noqa: ARG002
        return render_literal(self.value)


@dataclass
class ObjectExpression:
    """An object constructor ``{ key = value ... }`` built by the toolkit."""

    items: list[tuple[str, Expression]] = field(default_factory=list)

    def get(self, key: str) -> Expression | None:
        for item_key, value in self.items:
            if item_key == key:
                return value
        return None

    def keys(self) -> list[str]:
        return [key for key, _ in self.items]

    def render(self, indent: str = "") -> str:
        if not self.items:
            return "{}"
        inner = indent + INDENT
        keys = [render_key(key) for key, _ in self.items]
        width = max(len(key) for key in keys)
        lines = ["{"]
        for key, (_, value) in zip(keys, self.items, strict=True):
            lines.append(f"{inner}{key.ljust(width)} = {value.render(inner)}")
        lines.append(f"{indent}}}")
        return "\n".join(lines)


@dataclass
class TupleExpression:
    """A tuple constructor ``[a, b, ...]`` built by the toolkit."""

    elements: list[Expression] = field(default_factory=list)

    def render(self, indent: str = "") -> str:
        if not self.elements:
            return "[]"
        inner = indent + INDENT
        rendered = [element.render(inner) for element in self.elements]
        single_line = all("\n" not in text for text in rendered)
        if single_line and sum(len(text) + 2 for text in rendered) <= 80:
            return "[" + ", ".join(rendered) + "]"
        return "[\n" + ",\n".join(inner + text for text in rendered) + f"\n{indent}]"


Expression = Union[RawExpression, Literal, ObjectExpression, TupleExpression]


def render_literal(value: str | int | float | bool | None) -> str:
    """Render a Python scalar as an HCL literal."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return json.dumps(value)
    if isinstance(value, str):
        return quote(value)
    msg = f"Cannot render {type(value).__name__} as an HCL literal"
    raise TypeError(msg)


def quote(value: str) -> str:
    """Quote ``value`` as an HCL string literal with template sequences escaped."""
    escaped = (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
    return f'"{escaped}"'


def render_key(key: str) -> str:
    return key if IDENTIFIER_RE.fullmatch(key) else quote(key)


def to_expression(value: Any) -> Expression:
    """Convert plain Python data (or an expression) into an expression."""
    if isinstance(value, RawExpression | Literal | ObjectExpression | TupleExpression):
        return value
    if isinstance(value, dict):
        return ObjectExpression([(str(key), to_expression(item)) for key, item in value.items()])
    if isinstance(value, list | tuple):
        return TupleExpression([to_expression(item) for item in value])
    return Literal(value)


def literal_value(expression: Expression) -> Any:
    """Decode a simple literal expression, or return ``NOT_LITERAL``.

    Strings containing template interpolation are not literals.
    """
    if isinstance(expression, Literal):
        return expression.value
    if not isinstance(expression, RawExpression):
        return NOT_LITERAL
    text = expression.text.strip()
    if text in ("true", "false"):
        return text == "true"
    if text == "null":
        return None
    if _NUMBER_RE.fullmatch(text):
        if "." in text or "e" in text.lower():
            return float(text)
        return int(text)
    if len(text) >= 2 and text.startswith('"') and text.endswith('"'):
        if _INTERPOLATION_RE.search(text):
            return NOT_LITERAL
        try:
            decoded = json.loads(text)
        except ValueError:
            return NOT_LITERAL
        if isinstance(decoded, str):
            return decoded.replace("$${", "${").replace("%%{", "%{")
    return NOT_LITERAL


def expression_text(expression: Expression) -> str:
    """Source text of an expression as it would be written at the top level."""
    return expression.render()


# Body structure


@dataclass
class Attribute:
    """``name = expression`` with an optional trailing comment."""

    name: str
    expression: Expression
    comment: str | None = None

    @property
    def text(self) -> str:
        return self.expression.render()


@dataclass
class Trivia:
    """A comment on its own line, or a blank line when ``text`` is empty."""

    text: str = ""

    @property
    def is_blank(self) -> bool:
        return not self.text


@dataclass(eq=False)
class Block:
    """``type "label" ... { body }`` with an optional comment after the closing brace."""

    type: str
    labels: list[str] = field(default_factory=list)
    body: Body = field(default_factory=lambda: Body())
    comment: str | None = None

    @property
    def resource_type(self) -> str:
        return self.labels[0] if self.labels else ""

    @property
    def name(self) -> str:
        return self.labels[1] if len(self.labels) > 1 else ""

    @property
    def address_type(self) -> str:
        """Registry lookup key: ``<type>`` for resources, ``data.<type>`` for data sources."""
        if self.type == "data":
            return f"data.{self.resource_type}"
        return self.resource_type

    @property
    def address(self) -> str:
        return f"{self.address_type}.{self.name}"

    def __repr__(self) -> str:
        return f"<Block {' '.join([self.type, *self.labels])}>"


BodyItem = Union[Attribute, Block, Trivia]


@dataclass(eq=False)
class Body:
    """Ordered content of a file or block."""

    items: list[BodyItem] = field(default_factory=list)

    def __iter__(self) -> Iterator[BodyItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def attributes(self) -> list[Attribute]:
        return [item for item in self.items if isinstance(item, Attribute)]

    def attribute_names(self) -> list[str]:
        return [item.name for item in self.attributes()]

    def get_attribute(self, name: str) -> Attribute | None:
        for item in self.items:
            if isinstance(item, Attribute) and item.name == name:
                return item
        return None

    def has_attribute(self, name: str) -> bool:
        return self.get_attribute(name) is not None

    def set_attribute(self, name: str, expression: Expression, *, comment: str | None = None) -> Attribute:
        """Set ``name``; an existing attribute keeps its position.

        A new attribute goes after the last attribute of the body, or before
        the first nested block when the body has no attributes yet.
        """
        existing = self.get_attribute(name)
        if existing is not None:
            existing.expression = expression
            if comment is not None:
                existing.comment = comment
            return existing
        attribute = Attribute(name, expression, comment)
        self.items.insert(self.attribute_insert_index(), attribute)
        return attribute

    def attribute_insert_index(self) -> int:
        last_attribute = -1
        first_block = None
        for index, item in enumerate(self.items):
            if isinstance(item, Attribute):
                last_attribute = index
            elif isinstance(item, Block) and first_block is None:
                first_block = index
        if last_attribute >= 0:
            return last_attribute + 1
        if first_block is not None:
            return first_block
        return len(self.items)

    def remove_attribute(self, name: str) -> Attribute | None:
        attribute = self.get_attribute(name)
        if attribute is not None:
            self.remove(attribute)
        return attribute

    def blocks(self, block_type: str | None = None) -> list[Block]:
        return [
            item
            for item in self.items
            if isinstance(item, Block) and (block_type is None or item.type == block_type)
        ]

    def index(self, item: BodyItem) -> int:
        for index, candidate in enumerate(self.items):
            if candidate is item:
                return index
        msg = f"{item!r} is not part of this body"
        raise ValueError(msg)

    def contains(self, item: BodyItem) -> bool:
        return any(candidate is item for candidate in self.items)

    def remove(self, item: BodyItem) -> None:
        del self.items[self.index(item)]

    def append(self, item: BodyItem) -> None:
        self.items.append(item)

    def insert(self, index: int, *items: BodyItem) -> None:
        self.items[index:index] = list(items)

    def insert_after(self, anchor: BodyItem, *items: BodyItem) -> None:
        self.insert(self.index(anchor) + 1, *items)

    def add_comment(self, text: str, *, after: BodyItem | None = None) -> Trivia:
        """Add a comment line (``#`` is prepended when missing)."""
        if not text.startswith(("#", "//", "/*")):
            text = f"# {text}"
        trivia = Trivia(text)
        if after is None:
            self.items.append(trivia)
        else:
            self.insert_after(after, trivia)
        return trivia

    def walk_attributes(self, *, skip_block_types: tuple[str, ...] = ()) -> Iterator[Attribute]:
        """Yield every attribute of this body and of its nested blocks."""
        for item in self.items:
            if isinstance(item, Attribute):
                yield item
            elif isinstance(item, Block) and item.type not in skip_block_types:
                yield from item.body.walk_attributes(skip_block_types=skip_block_types)


# Parsing


def parse(text: str, filename: str = "<input>") -> Body:
    """Parse configuration text into a ``Body``.

    Raises:
        ParseError: With the filename, line and column of the problem.
    """
    return _Parser(text, filename).parse_file()


def validate_expression(text: str) -> bool:
    """Whether ``text`` is one syntactically valid expression that fits ``value = <text>``."""
    if not text.strip():
        return False
    try:
        body = parse(f"value = {text.strip()}\n", "<expression>")
        if len(body.items) != 1 or not isinstance(body.items[0], Attribute):
            return False
        check_expression(body.items[0].text)
    except ParseError:
        return False
    return True


def check_expression(text: str, filename: str = "<expression>") -> None:
    """Parse ``text`` against the expression grammar.

    Covers literals, templates and heredocs, references with attribute,
    index and splat access, function calls, tuple and object constructors,
    ``for`` expressions, unary and binary operators and conditionals.

    Raises:
        ParseError: At the first token that does not fit the grammar.
    """
    _ExpressionParser(text, filename).parse()


def _find_heredoc_end(text: str, start: int, marker: str) -> tuple[int, int] | None:
    """Return (line start, line end) of the closing heredoc marker line."""
    position = start
    while position <= len(text):
        line_end = text.find("\n", position)
        if line_end == -1:
            line_end = len(text)
        if text[position:line_end].strip() == marker:
            return position, line_end
        if line_end >= len(text):
            return None
        position = line_end + 1
    return None


class _Parser:
    text: str
    filename: str
    pos: int

    def __init__(self, text: str, filename: str) -> None:
        self.text = text.replace("\r\n", "\n")
        self.filename = filename
        self.pos = 0

    def error(self, message: str, position: int | None = None) -> ParseError:
        position = self.pos if position is None else position
        line = self.text.count("\n", 0, position) + 1
        column = position - (self.text.rfind("\n", 0, position) + 1) + 1
        return ParseError(message, filename=self.filename, line=line, column=column)

    def parse_file(self) -> Body:
        return self._parse_body(closing=False)

    def _parse_body(self, *, closing: bool) -> Body:
        body = Body()
        text = self.text
        newlines = 0
        while True:
            self._skip_inline_space()
            if self.pos >= len(text):
                if closing:
                    raise self.error("unclosed block, expected '}'")
                break
            char = text[self.pos]
            if char == "\n":
                newlines += 1
                self.pos += 1
                continue
            if char == "}":
                if closing:
                    self.pos += 1
                    break
                raise self.error("unexpected '}'")
            if newlines >= 2 and body.items:
                body.items.append(Trivia())
            newlines = 0
            if self._at_comment():
                body.items.append(Trivia(self._read_comment()))
                continue
            match = IDENTIFIER_RE.match(text, self.pos)
            if match is None:
                raise self.error(f"unexpected character {char!r}")
            line_start = text.rfind("\n", 0, self.pos) + 1
            indent_match = re.match(r"[ \t]*", text[line_start : self.pos])
            indent = indent_match.group() if indent_match else ""
            self.pos = match.end()
            self._skip_inline_space()
            if text.startswith("=", self.pos) and not text.startswith("==", self.pos):
                self.pos += 1
                body.items.append(self._parse_attribute(match.group(), indent))
            else:
                block = self._parse_block(match.group())
                self._skip_inline_space()
                if self._at_comment():
                    block.comment = self._read_comment()
                body.items.append(block)
        return body

    def _parse_attribute(self, name: str, indent: str) -> Attribute:
        self._skip_inline_space()
        start = self.pos
        end = self._scan_expression(start)
        raw = self.text[start:end].rstrip()
        if not raw:
            raise self.error(f"expected an expression for attribute '{name}'", start)
        self.pos = end
        comment = self._trailing_comment()
        if "\n" in raw and not _HEREDOC_RE.search(raw):
            raw = _dedent(raw, indent)
        return Attribute(name, RawExpression(raw), comment)

    def _parse_block(self, block_type: str) -> Block:
        labels: list[str] = []
        text = self.text
        while True:
            self._skip_inline_space()
            char = text[self.pos] if self.pos < len(text) else ""
            if char == '"':
                end = self._skip_quoted(self.pos)
                labels.append(text[self.pos + 1 : end - 1])
                self.pos = end
                continue
            match = IDENTIFIER_RE.match(text, self.pos)
            if match is not None:
                labels.append(match.group())
                self.pos = match.end()
                continue
            if char == "{":
                self.pos += 1
                break
            raise self.error(f"expected '=' or '{{' after '{block_type}'")
        body = self._parse_body(closing=True)
        return Block(block_type, labels, body)

    def _skip_inline_space(self) -> None:
        text = self.text
        while self.pos < len(text) and text[self.pos] in " \t\r":
            self.pos += 1

    def _at_comment(self) -> bool:
        return self.text.startswith(("#", "//", "/*"), self.pos)

    def _read_comment(self) -> str:
        text = self.text
        start = self.pos
        if text.startswith("/*", start):
            end = text.find("*/", start + 2)
            if end == -1:
                raise self.error("unterminated block comment", start)
            self.pos = end + 2
            return text[start : self.pos]
        end = text.find("\n", start)
        if end == -1:
            end = len(text)
        self.pos = end
        return text[start:end].rstrip()

    def _trailing_comment(self) -> str | None:
        self._skip_inline_space()
        comment = None
        if self._at_comment():
            comment = self._read_comment()
            self._skip_inline_space()
        if self.pos < len(self.text) and self.text[self.pos] not in "\n}":
            raise self.error("unexpected content after expression")
        return comment

    def _scan_expression(self, start: int) -> int:
        """Return the index just past the expression that begins at ``start``."""
        text = self.text
        position = start
        stack: list[tuple[str, int]] = []
        closers = {"(": ")", "[": "]", "{": "}"}
        while position < len(text):
            char = text[position]
            if char == '"':
                position = self._skip_quoted(position)
                continue
            if char == "<" and (heredoc := _HEREDOC_RE.match(text, position)):
                position = self._skip_heredoc(position, heredoc)
                continue
            if char == "#" or text.startswith("//", position):
                if not stack:
                    break
                line_end = text.find("\n", position)
                position = len(text) if line_end == -1 else line_end
                continue
            if text.startswith("/*", position):
                end = text.find("*/", position + 2)
                if end == -1:
                    raise self.error("unterminated block comment", position)
                # At the top level only an inline comment with more code after it is part of the expression.
                if not stack and ("\n" in text[position:end] or not self._code_follows(end + 2)):
                    break
                position = end + 2
                continue
            if char in closers:
                stack.append((closers[char], position))
            elif char in ")]}":
                if not stack:
                    if char == "}":
                        break
                    raise self.error(f"unexpected '{char}'", position)
                expected, opened_at = stack.pop()
                if char != expected:
                    raise self.error(f"mismatched '{char}', expected '{expected}'", position)
            elif char == "\n" and not stack:
                break
            position += 1
        if stack:
            expected, opened_at = stack[-1]
            raise self.error(f"unclosed bracket, expected '{expected}'", opened_at)
        return position

    def _code_follows(self, position: int) -> bool:
        line_end = self.text.find("\n", position)
        rest = self.text[position : len(self.text) if line_end == -1 else line_end].strip()
        return bool(rest) and not rest.startswith(("#", "//", "/*", "}"))

    def _skip_quoted(self, start: int) -> int:
        """Skip a quoted string (with template interpolations) starting at ``start``."""
        text = self.text
        position = start + 1
        while position < len(text):
            char = text[position]
            if char == "\\":
                position += 2
                continue
            if char == '"':
                return position + 1
            if char == "\n":
                break
            if text.startswith(("$${", "%%{"), position):
                position += 3
                continue
            if text.startswith(("${", "%{"), position):
                position = self._skip_interpolation(position + 2)
                continue
            position += 1
        raise self.error("unterminated string", start)

    def _skip_interpolation(self, start: int) -> int:
        text = self.text
        position = start
        depth = 0
        while position < len(text):
            char = text[position]
            if char == '"':
                position = self._skip_quoted(position)
                continue
            if char in "([{":
                depth += 1
            elif char in ")]}":
                if depth == 0:
                    if char == "}":
                        return position + 1
                    raise self.error(f"unexpected '{char}' in template", position)
                depth -= 1
            position += 1
        raise self.error("unterminated template interpolation", start)

    def _skip_heredoc(self, start: int, match: re.Match[str]) -> int:
        bounds = _find_heredoc_end(self.text, match.end(), match.group(2))
        if bounds is None:
            raise self.error(f"unterminated heredoc, expected '{match.group(2)}'", start)
        return bounds[1]


def _dedent(text: str, indent: str) -> str:
    """Strip the owning attribute's indentation from continuation lines."""
    first, *rest = text.split("\n")
    lines = [first.rstrip()]
    for line in rest:
        if indent and line.startswith(indent):
            line = line[len(indent) :]
        elif indent:
            line = line.lstrip(" \t")
        lines.append(line.rstrip())
    return "\n".join(lines)


# Expression grammar

_TOKEN_RE = re.compile(
    r"""
    (?P<space>[ \t\r]+)
  | (?P<newline>\n)
  | (?P<comment>\#[^\n]*|//[^\n]*)
  | (?P<block_comment>/\*)
  | (?P<heredoc><<-?[A-Za-z_][A-Za-z0-9_-]*[ \t]*\n)
  | (?P<number>\d+(?:\.\d+)?(?:[eE][+-]?\d+)?)
  | (?P<ident>[A-Za-z_][A-Za-z0-9_-]*)
  | (?P<string>")
  | (?P<op>\.\.\.|::|==|!=|<=|>=|&&|\|\||=>|[-+*/%<>!?:=,.()\[\]{}])
    """,
    re.VERBOSE,
)

# Loosest first.
_BINARY_OPERATORS = (("||",), ("&&",), ("==", "!="), ("<", ">", "<=", ">="), ("+", "-"), ("*", "/", "%"))


@dataclass(frozen=True)
class _Token:
    kind: str
    value: str
    position: int


def _tokenize(text: str, filename: str) -> list[_Token]:
    """Split expression text into tokens; string templates become start/end and interpolation tokens."""
    tokens: list[_Token] = []
    # "string" while inside a quoted template, else the bracket depth of an open interpolation.
    modes: list[str | int] = []
    position = 0

    def error(message: str, at: int) -> ParseError:
        line = text.count("\n", 0, at) + 1
        column = at - (text.rfind("\n", 0, at) + 1) + 1
        return ParseError(message, filename=filename, line=line, column=column)

    while position < len(text):
        if modes and modes[-1] == "string":
            char = text[position]
            if char == "\\":
                position += 2
            elif char == '"':
                tokens.append(_Token("string_end", char, position))
                modes.pop()
                position += 1
            elif char == "\n":
                raise error("unterminated string", position)
            elif text.startswith(("$${", "%%{"), position):
                position += 3
            elif text.startswith(("${", "%{"), position):
                kind = "interpolation" if char == "$" else "directive"
                tokens.append(_Token(kind, text[position : position + 2], position))
                position += 3 if text.startswith("~", position + 2) else 2
                modes.append(0)
            else:
                position += 1
            continue

        if modes and modes[-1] == 0 and text.startswith("~}", position):
            position += 1
            continue
        match = _TOKEN_RE.match(text, position)
        if match is None:
            raise error(f"unexpected character {text[position]!r}", position)
        kind = match.lastgroup or ""
        value = match.group()
        if kind in ("space", "comment"):
            position = match.end()
            continue
        if kind == "block_comment":
            end = text.find("*/", position + 2)
            if end == -1:
                raise error("unterminated block comment", position)
            position = end + 2
            continue
        if kind == "string":
            tokens.append(_Token("string_start", value, position))
            modes.append("string")
            position = match.end()
            continue
        if kind == "heredoc":
            marker = value.lstrip("<-").strip()
            bounds = _find_heredoc_end(text, match.end(), marker)
            if bounds is None:
                raise error(f"unterminated heredoc, expected '{marker}'", position)
            tokens.append(_Token("heredoc", text[position : bounds[1]], position))
            position = bounds[1]
            continue
        if kind == "op" and modes:
            depth = modes[-1]
            assert isinstance(depth, int)
            if value in ("(", "[", "{"):
                modes[-1] = depth + 1
            elif value == "}" and depth == 0:
                tokens.append(_Token("template_end", value, position))
                modes.pop()
                position = match.end()
                continue
            elif value in (")", "]", "}"):
                modes[-1] = depth - 1
        tokens.append(_Token(kind, value, position))
        position = match.end()

    if modes:
        message = "unterminated string" if modes[-1] == "string" else "unterminated template interpolation"
        raise error(message, len(text))
    tokens.append(_Token("eof", "", len(text)))
    return tokens


class _ExpressionParser:
    """Recursive-descent recognizer for the expression grammar.

    Newlines are insignificant inside parentheses, brackets, templates and
    ``for`` expressions; inside object constructors they separate items;
    outside any bracket they end the expression.
    """

    def __init__(self, text: str, filename: str) -> None:
        self.text = text
        self.filename = filename
        self.tokens = _tokenize(text, filename)
        self.index = 0
        self.skip_newlines = [False]

    def parse(self) -> None:
        self._skip_newline_tokens()
        self.expression()
        self._skip_newline_tokens()
        token = self.peek()
        if token.kind != "eof":
            raise self.error(f"unexpected {self._describe(token)} after expression", token)

    # Token access

    def error(self, message: str, token: _Token) -> ParseError:
        line = self.text.count("\n", 0, token.position) + 1
        column = token.position - (self.text.rfind("\n", 0, token.position) + 1) + 1
        return ParseError(message, filename=self.filename, line=line, column=column)

    @staticmethod
    def _describe(token: _Token) -> str:
        if token.kind == "eof":
            return "end of expression"
        if token.kind == "newline":
            return "newline"
        return repr(token.value[:20])

    @contextmanager
    def newlines(self, *, ignored: bool) -> Iterator[None]:
        self.skip_newlines.append(ignored)
        try:
            yield
        finally:
            self.skip_newlines.pop()

    def _skip_newline_tokens(self) -> None:
        while self.tokens[self.index].kind == "newline":
            self.index += 1

    def peek(self) -> _Token:
        if self.skip_newlines[-1]:
            self._skip_newline_tokens()
        return self.tokens[self.index]

    def lookahead(self, offset: int) -> _Token:
        """The token ``offset`` places after the next one, newlines skipped."""
        index = self.index
        seen = -1
        while True:
            token = self.tokens[index]
            if token.kind != "newline":
                seen += 1
                if seen == offset or token.kind == "eof":
                    return token
            index += 1

    def advance(self) -> _Token:
        token = self.peek()
        if token.kind != "eof":
            self.index += 1
        return token

    def peek_op(self) -> str | None:
        token = self.peek()
        return token.value if token.kind == "op" else None

    def accept(self, op: str) -> bool:
        if self.peek_op() == op:
            self.index += 1
            return True
        return False

    def expect(self, op: str) -> None:
        if not self.accept(op):
            token = self.peek()
            raise self.error(f"expected '{op}', found {self._describe(token)}", token)

    def expect_kind(self, kind: str, what: str) -> _Token:
        token = self.peek()
        if token.kind != kind:
            raise self.error(f"expected {what}, found {self._describe(token)}", token)
        self.index += 1
        return token

    def at_keyword(self, keyword: str) -> bool:
        token = self.peek()
        return token.kind == "ident" and token.value == keyword

    def expect_keyword(self, keyword: str) -> None:
        if not self.at_keyword(keyword):
            token = self.peek()
            raise self.error(f"expected '{keyword}', found {self._describe(token)}", token)
        self.index += 1

    # Grammar

    def expression(self) -> None:
        self.binary(0)
        if self.accept("?"):
            self.expression()
            self.expect(":")
            self.expression()

    def binary(self, level: int) -> None:
        if level == len(_BINARY_OPERATORS):
            self.unary()
            return
        self.binary(level + 1)
        while self.peek_op() in _BINARY_OPERATORS[level]:
            self.index += 1
            self.binary(level + 1)

    def unary(self) -> None:
        while self.peek_op() in ("!", "-"):
            self.index += 1
        self.postfix()

    def postfix(self) -> None:
        self.operand()
        while True:
            op = self.peek_op()
            if op == ".":
                self.index += 1
                token = self.advance()
                if token.kind not in ("ident", "number") and not (token.kind == "op" and token.value == "*"):
                    raise self.error(f"expected an attribute name after '.', found {self._describe(token)}", token)
            elif op == "[":
                self.index += 1
                with self.newlines(ignored=True):
                    if not self.accept("*"):
                        self.expression()
                    self.expect("]")
            else:
                return

    def operand(self) -> None:
        token = self.advance()
        if token.kind in ("number", "heredoc"):
            return
        if token.kind == "string_start":
            self.template()
            return
        if token.kind == "ident":
            if self.peek_op() == "::":
                while self.accept("::"):
                    self.expect_kind("ident", "a function name")
                self.call()
            elif self.peek_op() == "(":
                self.call()
            return
        if token.kind == "op" and token.value == "(":
            with self.newlines(ignored=True):
                self.expression()
                self.expect(")")
            return
        if token.kind == "op" and token.value == "[":
            self.tuple()
            return
        if token.kind == "op" and token.value == "{":
            self.object()
            return
        raise self.error(f"expected an expression, found {self._describe(token)}", token)

    def call(self) -> None:
        self.expect("(")
        with self.newlines(ignored=True):
            if self.accept(")"):
                return
            while True:
                self.expression()
                if self.accept("..."):
                    self.expect(")")
                    return
                if not self.accept(","):
                    self.expect(")")
                    return
                if self.accept(")"):
                    return

    def _at_for(self) -> bool:
        first = self.lookahead(0)
        return first.kind == "ident" and first.value == "for" and self.lookahead(1).kind == "ident"

    def tuple(self) -> None:
        with self.newlines(ignored=True):
            if self._at_for():
                self.for_body("]", is_object=False)
                return
            if self.accept("]"):
                return
            while True:
                self.expression()
                if not self.accept(","):
                    self.expect("]")
                    return
                if self.accept("]"):
                    return

    def object(self) -> None:
        if self._at_for():
            with self.newlines(ignored=True):
                self.for_body("}", is_object=True)
            return
        with self.newlines(ignored=False):
            self._skip_newline_tokens()
            while not self.accept("}"):
                self.expression()
                if not (self.accept("=") or self.accept(":")):
                    token = self.peek()
                    raise self.error(f"expected '=' after object key, found {self._describe(token)}", token)
                self.expression()
                token = self.peek()
                if token.kind == "op" and token.value == ",":
                    self.index += 1
                elif token.kind == "newline":
                    pass
                elif not (token.kind == "op" and token.value == "}"):
                    raise self.error(f"expected ',' or a newline between object items, found {self._describe(token)}", token)
                self._skip_newline_tokens()

    def for_body(self, closing: str, *, is_object: bool) -> None:
        self.expect_keyword("for")
        self.expect_kind("ident", "an iterator name")
        if self.accept(","):
            self.expect_kind("ident", "an iterator name")
        self.expect_keyword("in")
        self.expression()
        self.expect(":")
        self.expression()
        if is_object:
            self.expect("=>")
            self.expression()
            self.accept("...")
        if self.at_keyword("if"):
            self.index += 1
            self.expression()
        self.expect(closing)

    def template(self) -> None:
        while True:
            token = self.advance()
            if token.kind == "string_end":
                return
            if token.kind == "interpolation":
                with self.newlines(ignored=True):
                    self.expression()
                    self.expect_kind("template_end", "'}'")
            elif token.kind == "directive":
                with self.newlines(ignored=True):
                    self.directive()
                    self.expect_kind("template_end", "'}'")
            else:
                raise self.error(f"unexpected {self._describe(token)} in string", token)

    def directive(self) -> None:
        token = self.expect_kind("ident", "a template directive")
        if token.value == "if":
            self.expression()
        elif token.value == "for":
            self.expect_kind("ident", "an iterator name")
            if self.accept(","):
                self.expect_kind("ident", "an iterator name")
            self.expect_keyword("in")
            self.expression()
        elif token.value not in ("else", "endif", "endfor"):
            raise self.error(f"unknown template directive {token.value!r}", token)


# Code-aware substitution


def mask_literals(text: str) -> str:
    """Replace string contents, heredoc bodies and comments with NUL characters.

    Template interpolations inside strings stay visible, as do newlines, so
    offsets into the masked text are offsets into ``text``.
    """
    pieces = []
    for is_code, segment in _split_code(text):
        if is_code:
            pieces.append(segment)
        else:
            pieces.append("".join(char if char == "\n" else "\0" for char in segment))
    return "".join(pieces)


def substitute_in_code(
    pattern: re.Pattern[str], text: str, replace: Callable[[re.Match[str], str], str]
) -> str:
    """Replace matches of ``pattern`` that lie in the code parts of ``text``.

    Matching runs against ``mask_literals(text)``; ``replace`` receives the
    match and the original text and returns the replacement.
    """
    masked = mask_literals(text)
    pieces = []
    last = 0
    for match in pattern.finditer(masked):
        pieces.append(text[last : match.start()])
        pieces.append(replace(match, text))
        last = match.end()
    pieces.append(text[last:])
    return "".join(pieces)


def _split_code(text: str) -> list[tuple[bool, str]]:
    segments: list[tuple[bool, str]] = []
    _split_code_region(text, 0, segments, nested=False)
    return segments


def _split_code_region(text: str, position: int, segments: list[tuple[bool, str]], *, nested: bool) -> int:
    start = position
    depth = 0
    while position < len(text):
        char = text[position]
        if char == '"':
            segments.append((True, text[start:position]))
            position = start = _split_string(text, position, segments)
            continue
        if char == "<" and (heredoc := _HEREDOC_RE.match(text, position)):
            segments.append((True, text[start:position]))
            position = start = _split_heredoc(text, position, heredoc, segments)
            continue
        if char == "#" or text.startswith(("//", "/*"), position):
            if text.startswith("/*", position):
                end = text.find("*/", position + 2)
                end = len(text) if end == -1 else end + 2
            else:
                end = text.find("\n", position)
                end = len(text) if end == -1 else end
            segments.append((True, text[start:position]))
            segments.append((False, text[position:end]))
            position = start = end
            continue
        if char in "([{":
            depth += 1
        elif char in ")]}":
            if depth == 0 and nested:
                segments.append((True, text[start:position]))
                return position
            depth -= 1
        position += 1
    segments.append((True, text[start:position]))
    return position


def _split_template(
    text: str, start: int, position: int, stop: Callable[[int], bool], segments: list[tuple[bool, str]]
) -> tuple[int, int]:
    """Walk template text until ``stop``; returns (pending literal start, stop position)."""
    while position < len(text) and not stop(position):
        if text[position] == "\\":
            position += 2
            continue
        if text.startswith(("$${", "%%{"), position):
            position += 3
            continue
        if text.startswith(("${", "%{"), position):
            position += 2
            segments.append((False, text[start:position]))
            position = start = _split_code_region(text, position, segments, nested=True)
            position += 1
            continue
        position += 1
    return start, min(position, len(text))


def _split_string(text: str, position: int, segments: list[tuple[bool, str]]) -> int:
    start, end = _split_template(text, position, position + 1, lambda index: text[index] in '"\n', segments)
    end = end + 1 if end < len(text) and text[end] == '"' else end
    segments.append((False, text[start:end]))
    return end


def _split_heredoc(text: str, position: int, match: re.Match[str], segments: list[tuple[bool, str]]) -> int:
    bounds = _find_heredoc_end(text, match.end(), match.group(2))
    if bounds is None:
        segments.append((False, text[position:]))
        return len(text)
    close_start, close_end = bounds
    start, _ = _split_template(text, position, match.end(), lambda index: index >= close_start, segments)
    segments.append((False, text[start:close_end]))
    return close_end


# Serialization


def format_body(body: Body) -> str:
    """Serialize a file body; empty bodies yield an empty string."""
    lines = _render_body(body, "", top_level=True)
    if not lines:
        return ""
    return "\n".join(lines) + "\n"


def format_block(block: Block, indent: str = "") -> str:
    return "\n".join(_render_block(block, indent))


def _render_body(body: Body, indent: str, *, top_level: bool = False) -> list[str]:
    lines: list[str] = []
    items = body.items
    previous: BodyItem | None = None
    pending_blank = False
    index = 0
    while index < len(items):
        item = items[index]
        if isinstance(item, Trivia) and item.is_blank:
            pending_blank = previous is not None
            index += 1
            continue
        if top_level and previous is not None:
            after_block = isinstance(previous, Block)
            before_block = isinstance(item, Block) and not (isinstance(previous, Trivia) and not previous.is_blank)
            if after_block or before_block:
                pending_blank = True
        if pending_blank:
            lines.append("")
            pending_blank = False

        if isinstance(item, Attribute):
            run = [item]
            while (
                index + len(run) < len(items)
                and isinstance(items[index + len(run)], Attribute)
                and "\n" not in run[-1].expression.render(indent)
            ):
                run.append(items[index + len(run)])  # type: ignore[arg-type]
            width = max(len(attribute.name) for attribute in run)
            for attribute in run:
                line = f"{indent}{attribute.name.ljust(width)} = {attribute.expression.render(indent)}"
                if attribute.comment:
                    line += f" {attribute.comment}"
                lines.append(line)
            previous = run[-1]
            index += len(run)
            continue

        if isinstance(item, Block):
            lines.extend(_render_block(item, indent))
        else:
            lines.append(f"{indent}{item.text}")
        previous = item
        index += 1
    return lines


def _render_block(block: Block, indent: str) -> list[str]:
    header = indent + block.type + "".join(f' "{label}"' for label in block.labels) + " {"
    trailer = f" {block.comment}" if block.comment else ""
    inner = _render_body(block.body, indent + INDENT)
    if not inner:
        return [header + "}" + trailer]
    return [header, *inner, f"{indent}}}{trailer}"]
