"""JavaScript dependency scanner built on a small hand-written lexer.

Extraction is approximate: it recognizes declared import/export forms only
and never evaluates code. Comments are blanked out first so that import-like
text inside them cannot produce dependencies; string and template literal
contents are kept intact so that specifiers survive.
"""

from __future__ import annotations

from dataclasses import dataclass

from code_impact.models import ScannedFile
from code_impact.scanner.base import BaseScanner

WILDCARD_EXPORT = "*"

# A "/" after one of these characters starts a regex literal, not division.
_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")

_STATEMENT_KEYWORDS = {
    "export", "import", "const", "let", "var",
    "return", "if", "for", "while", "switch", "throw", "try",
}


def _is_ident_start(ch: str) -> bool:
    return ch.isalpha() or ch in "_$"


def _is_ident_part(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def _skip_regex(source: str, start: int) -> int:
    """Return the index just past a regex literal whose opening ``/`` is at ``start``."""
    i = start + 1
    in_class = False
    while i < len(source):
        ch = source[i]
        if ch == "\n":
            return i
        if ch == "\\":
            i += 2
            continue
        if ch == "[":
            in_class = True
        elif ch == "]":
            in_class = False
        elif ch == "/" and not in_class:
            return i + 1
        i += 1
    return i


def strip_comments(source: str) -> str:
    """Blank out ``//`` and ``/* */`` comments, preserving strings and line breaks.

    The output has the same length and line structure as the input.
    """
    out: list[str] = []
    state = "normal"
    last_significant = ""
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]
        nxt = source[i + 1] if i + 1 < n else ""

        if state == "normal":
            if ch in "'\"`":
                state = {"'": "single", '"': "double", "`": "template"}[ch]
                out.append(ch)
                last_significant = ch
                i += 1
                continue
            if ch == "/" and nxt == "/":
                state = "line_comment"
                out.append("  ")
                i += 2
                continue
            if ch == "/" and nxt == "*":
                state = "block_comment"
                out.append("  ")
                i += 2
                continue
            if ch == "/" and (not last_significant or last_significant in _REGEX_PRECEDERS):
                end = _skip_regex(source, i)
                out.append(source[i:end])
                last_significant = "/"
                i = end
                continue
            out.append(ch)
            if not ch.isspace():
                last_significant = ch
            i += 1
            continue

        if state == "line_comment":
            if ch == "\n":
                state = "normal"
                out.append("\n")
            else:
                out.append(" ")
            i += 1
            continue

        if state == "block_comment":
            if ch == "*" and nxt == "/":
                state = "normal"
                out.append("  ")
                i += 2
            else:
                out.append("\n" if ch == "\n" else " ")
                i += 1
            continue

        # single / double / template literal
        quote = {"single": "'", "double": '"', "template": "`"}[state]
        out.append(ch)
        if ch == "\\" and nxt:
            out.append(nxt)
            i += 2
            continue
        if ch == quote:
            state = "normal"
        i += 1

    return "".join(out)


@dataclass
class Token:
    kind: str  # "ident" | "string" | "template" | "number" | "punct"
    value: str
    pos: int


def tokenize(source: str) -> list[Token]:
    """Split comment-free source into identifiers, literals and punctuation."""
    tokens: list[Token] = []
    i = 0
    n = len(source)

    while i < n:
        ch = source[i]
        if ch.isspace():
            i += 1
            continue

        if _is_ident_start(ch):
            start = i
            while i < n and _is_ident_part(source[i]):
                i += 1
            tokens.append(Token("ident", source[start:i], start))
            continue

        if ch.isdigit():
            start = i
            while i < n and (source[i].isalnum() or source[i] in "._"):
                i += 1
            tokens.append(Token("number", source[start:i], start))
            continue

        if ch in "'\"`":
            start = i
            chars: list[str] = []
            i += 1
            while i < n and source[i] != ch:
                if source[i] == "\\" and i + 1 < n:
                    chars.append(source[i + 1])
                    i += 2
                    continue
                if source[i] == "\n" and ch != "`":
                    break
                chars.append(source[i])
                i += 1
            i += 1
            tokens.append(Token("template" if ch == "`" else "string", "".join(chars), start))
            continue

        if ch == "/":
            prev = tokens[-1] if tokens else None
            if prev is None or (prev.kind == "punct" and prev.value in _REGEX_PRECEDERS) or (
                prev.kind == "ident" and prev.value in ("return", "typeof")
            ):
                i = _skip_regex(source, i)
                continue

        tokens.append(Token("punct", ch, i))
        i += 1

    return tokens


class _Cursor:
    """Read-only view over a token list with lookahead helpers."""

    def __init__(self, tokens: list[Token]):
        self.tokens = tokens

    def at(self, i: int) -> Token | None:
        if 0 <= i < len(self.tokens):
            return self.tokens[i]
        return None

    def is_ident(self, i: int, value: str | None = None) -> bool:
        tok = self.at(i)
        return tok is not None and tok.kind == "ident" and (value is None or tok.value == value)

    def is_punct(self, i: int, value: str) -> bool:
        tok = self.at(i)
        return tok is not None and tok.kind == "punct" and tok.value == value

    def is_string(self, i: int) -> bool:
        tok = self.at(i)
        return tok is not None and tok.kind == "string"

    def keyword_at(self, i: int, value: str) -> bool:
        """True if ``value`` appears at ``i`` as a keyword, not as a property name."""
        return self.is_ident(i, value) and not self.is_punct(i - 1, ".")

    def from_clause(self, i: int) -> str | None:
        """Specifier of ``from '<spec>'`` starting at ``i``."""
        if self.is_ident(i, "from") and self.is_string(i + 1):
            spec = self.tokens[i + 1].value.strip()
            return spec or None
        return None

    def matching(self, i: int) -> int:
        """Index of the bracket closing the one opened at ``i`` (or len on EOF)."""
        pairs = {"{": "}", "(": ")", "[": "]"}
        depth = 0
        j = i
        while j < len(self.tokens):
            tok = self.tokens[j]
            if tok.kind == "punct":
                if tok.value in pairs:
                    depth += 1
                elif tok.value in pairs.values():
                    depth -= 1
                    if depth == 0:
                        return j
            j += 1
        return j


def _import_specifier(cur: _Cursor, i: int) -> str | None:
    # import('x')
    if cur.is_punct(i + 1, "(") and cur.is_string(i + 2) and cur.is_punct(i + 3, ")"):
        return cur.tokens[i + 2].value.strip() or None
    # import 'x'
    if cur.is_string(i + 1):
        return cur.tokens[i + 1].value.strip() or None
    # import [type] <clause> from 'x' -- clause is identifiers, '*', braces and commas
    j = i + 1
    seen_clause = False
    while j < len(cur.tokens):
        tok = cur.tokens[j]
        if tok.kind == "ident" and tok.value == "from" and seen_clause:
            return cur.from_clause(j)
        if tok.kind == "ident" or (tok.kind == "punct" and tok.value in "*{},"):
            seen_clause = True
            j += 1
            continue
        return None
    return None


def _export_specifier(cur: _Cursor, i: int) -> str | None:
    j = i + 1
    if cur.is_punct(j, "*"):
        # export * from 'x' / export * as ns from 'x'
        if cur.is_ident(j + 1, "as") and cur.is_ident(j + 2):
            return cur.from_clause(j + 3)
        return cur.from_clause(j + 1)
    if cur.is_punct(j, "{"):
        close = cur.matching(j)
        return cur.from_clause(close + 1)
    return None


def parse_imports(source: str) -> list[str]:
    """Dependency specifiers declared by comment-free source, in first-seen order.

    Covers static, side-effect, dynamic (string literal argument only),
    re-export and wildcard re-export forms.
    """
    cur = _Cursor(tokenize(source))
    specs: list[str] = []
    seen: set[str] = set()

    for i, tok in enumerate(cur.tokens):
        if tok.kind != "ident":
            continue
        spec = None
        if cur.keyword_at(i, "import"):
            spec = _import_specifier(cur, i)
        elif cur.keyword_at(i, "export"):
            spec = _export_specifier(cur, i)
        if spec and spec not in seen:
            seen.add(spec)
            specs.append(spec)

    return specs


def _binding_names(cur: _Cursor, start: int, end: int) -> list[str]:
    """Names bound by a destructuring pattern spanning tokens ``start..end``."""
    names: list[str] = []
    j = start
    while j <= end:
        tok = cur.tokens[j]
        if tok.kind == "ident":
            nxt = cur.at(j + 1)
            if nxt is not None and nxt.kind == "punct" and nxt.value in ",}]=":
                names.append(tok.value)
            if nxt is not None and nxt.kind == "punct" and nxt.value == "=":
                # skip default value
                j += 2
                while j <= end and not (cur.tokens[j].kind == "punct" and cur.tokens[j].value in ",}]"):
                    if cur.tokens[j].kind == "punct" and cur.tokens[j].value in "{([":
                        j = cur.matching(j)
                    j += 1
                continue
        j += 1
    return names


def _declared_names(cur: _Cursor, j: int) -> list[str]:
    """Names declared by ``const|let|var`` declarators starting at token ``j``."""
    names: list[str] = []
    expect_binding = True
    while j < len(cur.tokens):
        tok = cur.tokens[j]
        if expect_binding:
            if tok.kind == "ident":
                names.append(tok.value)
            elif tok.kind == "punct" and tok.value in "{[":
                close = cur.matching(j)
                names.extend(_binding_names(cur, j + 1, close - 1))
                j = close
            else:
                break
            expect_binding = False
            j += 1
            continue

        if tok.kind == "punct":
            if tok.value == ";":
                break
            if tok.value == ",":
                expect_binding = True
                j += 1
                continue
            if tok.value in "{([":
                j = cur.matching(j) + 1
                continue
            if tok.value in "})]":
                break
        elif tok.kind == "ident" and tok.value in _STATEMENT_KEYWORDS and not cur.is_punct(j - 1, "."):
            break
        j += 1
    return names


def _export_list_names(cur: _Cursor, open_idx: int) -> list[str]:
    close = cur.matching(open_idx)
    names: list[str] = []
    entry: list[Token] = []
    for tok in cur.tokens[open_idx + 1:close] + [Token("punct", ",", -1)]:
        if tok.kind == "punct" and tok.value == ",":
            if len(entry) == 1 and entry[0].kind == "ident":
                names.append(entry[0].value)
            elif len(entry) == 3 and entry[1].kind == "ident" and entry[1].value == "as":
                if entry[2].kind in ("ident", "string"):
                    names.append(entry[2].value)
            entry = []
            continue
        entry.append(tok)
    return names


def parse_exports(source: str) -> list[str]:
    """Exported symbol names (best-effort), sorted.

    ``export * from`` contributes the wildcard marker ``"*"`` because the
    re-exported names are unknown without resolving the target.
    """
    cur = _Cursor(tokenize(source))
    exports: set[str] = set()

    for i, tok in enumerate(cur.tokens):
        if not (tok.kind == "ident" and cur.keyword_at(i, "export")):
            continue
        j = i + 1
        nxt = cur.at(j)
        if nxt is None:
            continue

        if nxt.kind == "ident":
            if nxt.value == "default":
                exports.add("default")
            elif nxt.value in ("async", "function"):
                if nxt.value == "async":
                    j += 1
                if cur.is_ident(j, "function"):
                    j += 1
                    if cur.is_punct(j, "*"):
                        j += 1
                    if cur.is_ident(j):
                        exports.add(cur.tokens[j].value)
            elif nxt.value == "class":
                if cur.is_ident(j + 1):
                    exports.add(cur.tokens[j + 1].value)
            elif nxt.value in ("const", "let", "var"):
                exports.update(_declared_names(cur, j + 1))
            continue

        if nxt.kind == "punct" and nxt.value == "{":
            exports.update(_export_list_names(cur, j))
        elif nxt.kind == "punct" and nxt.value == "*":
            if cur.is_ident(j + 1, "as") and cur.is_ident(j + 2) and cur.from_clause(j + 3):
                exports.add(cur.tokens[j + 2].value)
            elif cur.from_clause(j + 1):
                exports.add(WILDCARD_EXPORT)

    return sorted(exports)


class JsScanner(BaseScanner):
    extensions = (".js",)

    def scan_source(self, source: str) -> ScannedFile:
        stripped = strip_comments(source)
        return ScannedFile(
            specifiers=parse_imports(stripped),
            exports=parse_exports(stripped),
        )
