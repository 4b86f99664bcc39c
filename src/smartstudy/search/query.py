"""Query normalisation and a small boolean/wildcard query language.

Queries are parsed into node trees that evaluate against an index snapshot
exposing ``postings`` (term -> entry positions), ``tokens`` (analyzed tokens
per entry) and ``size``. Clauses default to OR; ``AND``, ``OR``, ``NOT``,
``+``/``-`` prefixes, parentheses, quoted phrases and ``*``/``?`` wildcards
are understood.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, FrozenSet, List, Optional, Sequence

from smartstudy.errors import QuerySyntaxError

if TYPE_CHECKING:  # pragma: no cover - import for type checking only
    from .index import IndexSnapshot

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_NO_WRAP_CHARS = frozenset('*?()"')
_MAX_SCORING_EXPANSIONS = 128

SYNONYM_TRIGGER = "dbms"
SYNONYM_EXPANSION = " OR database OR database management system"
MAX_WRAPPED_TOKENS = 3


def analyze(text: str) -> List[str]:
    """Split text into lower-cased word tokens, the same way for documents and queries."""

    return [token.lower() for token in _WORD_RE.findall(text)]


def normalize_query(query: str) -> str:
    """Rewrite a loose user query before parsing.

    Short plain queries are wrapped in wildcards for substring-style recall,
    and queries mentioning ``dbms`` are widened with its spelled-out forms.
    """

    processed = query.strip()
    if (
        len(processed.split()) <= MAX_WRAPPED_TOKENS
        and not any(char in _NO_WRAP_CHARS for char in processed)
        and len(processed) > 1
    ):
        processed = f"*{processed}*"
    if SYNONYM_TRIGGER in processed.lower():
        processed += SYNONYM_EXPANSION
    return processed


class Occur(str, Enum):
    MUST = "must"
    SHOULD = "should"
    MUST_NOT = "must_not"


class QueryNode:
    """Base class for parsed query nodes."""

    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        raise NotImplementedError

    def scoring_terms(self, snapshot: "IndexSnapshot") -> List[str]:
        return []


@dataclass(frozen=True)
class MatchAllNode(QueryNode):
    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        return frozenset(range(snapshot.size))


@dataclass(frozen=True)
class MatchNoneNode(QueryNode):
    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        return frozenset()


@dataclass(frozen=True)
class TermNode(QueryNode):
    term: str

    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        return frozenset(snapshot.postings.get(self.term, ()))

    def scoring_terms(self, snapshot: "IndexSnapshot") -> List[str]:
        return [self.term]


@dataclass(frozen=True)
class WildcardNode(QueryNode):
    pattern: str
    _regex: "re.Pattern[str]" = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        parts = []
        for char in self.pattern:
            if char == "*":
                parts.append(".*")
            elif char == "?":
                parts.append(".")
            else:
                parts.append(re.escape(char))
        object.__setattr__(self, "_regex", re.compile("".join(parts), re.DOTALL))

    def expand(self, snapshot: "IndexSnapshot") -> List[str]:
        return sorted(term for term in snapshot.postings if self._regex.fullmatch(term))

    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        matched: set[int] = set()
        for term in self.expand(snapshot):
            matched.update(snapshot.postings[term])
        return frozenset(matched)

    def scoring_terms(self, snapshot: "IndexSnapshot") -> List[str]:
        return self.expand(snapshot)[:_MAX_SCORING_EXPANSIONS]


@dataclass(frozen=True)
class PhraseNode(QueryNode):
    terms: tuple[str, ...]

    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        candidates: Optional[set[int]] = None
        for term in self.terms:
            postings = snapshot.postings.get(term, set())
            candidates = set(postings) if candidates is None else candidates & postings
            if not candidates:
                return frozenset()
        width = len(self.terms)
        matched = set()
        for position in candidates or ():
            tokens = snapshot.tokens[position]
            for start in range(len(tokens) - width + 1):
                if tuple(tokens[start : start + width]) == self.terms:
                    matched.add(position)
                    break
        return frozenset(matched)

    def scoring_terms(self, snapshot: "IndexSnapshot") -> List[str]:
        return list(self.terms)


@dataclass(frozen=True)
class Clause:
    node: QueryNode
    occur: Occur


@dataclass(frozen=True)
class BooleanNode(QueryNode):
    clauses: tuple[Clause, ...]

    def evaluate(self, snapshot: "IndexSnapshot") -> FrozenSet[int]:
        required: Optional[set[int]] = None
        optional: set[int] = set()
        excluded: set[int] = set()
        has_optional = False
        for clause in self.clauses:
            matched = clause.node.evaluate(snapshot)
            if clause.occur is Occur.MUST:
                required = set(matched) if required is None else required & matched
            elif clause.occur is Occur.SHOULD:
                has_optional = True
                optional |= matched
            else:
                excluded |= matched

        if required is not None:
            result = required
        elif has_optional:
            result = optional
        else:
            result = set()
        return frozenset(result - excluded)

    def scoring_terms(self, snapshot: "IndexSnapshot") -> List[str]:
        terms: List[str] = []
        for clause in self.clauses:
            if clause.occur is not Occur.MUST_NOT:
                terms.extend(clause.node.scoring_terms(snapshot))
        return terms


# lexer --------------------------------------------------------------------------------
_TERM_STOP_CHARS = frozenset('()"')
_OPERATORS = {"AND": "AND", "&&": "AND", "OR": "OR", "||": "OR", "NOT": "NOT"}


@dataclass(frozen=True)
class _Token:
    kind: str  # TERM, PHRASE, LPAREN, RPAREN, AND, OR, NOT, PLUS, MINUS
    text: str = ""


def _tokenize(query: str) -> List[_Token]:
    tokens: List[_Token] = []
    length = len(query)
    index = 0
    while index < length:
        char = query[index]
        if char.isspace():
            index += 1
            continue
        if char == "(":
            tokens.append(_Token("LPAREN"))
            index += 1
            continue
        if char == ")":
            tokens.append(_Token("RPAREN"))
            index += 1
            continue
        if char == '"':
            end = query.find('"', index + 1)
            if end == -1:
                raise QuerySyntaxError("Unterminated phrase in query")
            tokens.append(_Token("PHRASE", query[index + 1 : end]))
            index = end + 1
            continue
        if char in "+-":
            if index + 1 >= length or query[index + 1].isspace() or query[index + 1] == ")":
                raise QuerySyntaxError(f"Dangling '{char}' in query")
            tokens.append(_Token("PLUS" if char == "+" else "MINUS"))
            index += 1
            continue

        start = index
        while index < length and not query[index].isspace() and query[index] not in _TERM_STOP_CHARS:
            index += 1
        text = query[start:index]
        operator = _OPERATORS.get(text)
        tokens.append(_Token(operator, text) if operator else _Token("TERM", text))
    return tokens


class QueryParser:
    """Recursive-descent parser producing :class:`QueryNode` trees."""

    def parse(self, query: str) -> QueryNode:
        self._tokens = _tokenize(query)
        self._position = 0
        node = self._parse_query()
        if self._position < len(self._tokens):
            raise QuerySyntaxError("Unbalanced ')' in query")
        return node

    def _peek(self) -> Optional[_Token]:
        if self._position < len(self._tokens):
            return self._tokens[self._position]
        return None

    def _next(self) -> _Token:
        token = self._peek()
        if token is None:
            raise QuerySyntaxError("Unexpected end of query")
        self._position += 1
        return token

    def _parse_query(self) -> QueryNode:
        clauses: List[Clause] = []
        while True:
            token = self._peek()
            if token is None or token.kind == "RPAREN":
                break

            conjunction = None
            if token.kind in ("AND", "OR"):
                if not clauses:
                    raise QuerySyntaxError(f"Query cannot start with {token.text}")
                conjunction = self._next().kind

            negated = False
            if self._peek() is not None and self._peek().kind == "NOT":
                self._next()
                negated = True

            modifier = None
            if self._peek() is not None and self._peek().kind in ("PLUS", "MINUS"):
                modifier = self._next().kind

            node = self._parse_clause()

            if negated or modifier == "MINUS":
                occur = Occur.MUST_NOT
            elif modifier == "PLUS" or conjunction == "AND":
                occur = Occur.MUST
            else:
                occur = Occur.SHOULD

            if conjunction == "AND" and clauses and clauses[-1].occur is Occur.SHOULD:
                clauses[-1] = Clause(clauses[-1].node, Occur.MUST)
            clauses.append(Clause(node, occur))

        if not clauses:
            raise QuerySyntaxError("Empty query or group")
        if len(clauses) == 1 and clauses[0].occur is not Occur.MUST_NOT:
            return clauses[0].node
        return BooleanNode(tuple(clauses))

    def _parse_clause(self) -> QueryNode:
        token = self._next()
        if token.kind == "LPAREN":
            node = self._parse_query()
            closing = self._peek()
            if closing is None or closing.kind != "RPAREN":
                raise QuerySyntaxError("Missing ')' in query")
            self._next()
            return node
        if token.kind == "PHRASE":
            return _phrase_node(analyze(token.text))
        if token.kind == "TERM":
            return _term_node(token.text)
        raise QuerySyntaxError(f"Unexpected {token.text or token.kind} in query")


def _term_node(text: str) -> QueryNode:
    if "*" in text or "?" in text:
        return WildcardNode(text.lower())
    terms = analyze(text)
    if not terms:
        return MatchNoneNode()
    if len(terms) == 1:
        return TermNode(terms[0])
    return BooleanNode(tuple(Clause(TermNode(term), Occur.SHOULD) for term in terms))


def _phrase_node(terms: Sequence[str]) -> QueryNode:
    if not terms:
        return MatchNoneNode()
    if len(terms) == 1:
        return TermNode(terms[0])
    return PhraseNode(tuple(terms))


def parse_query(query: str) -> QueryNode:
    return QueryParser().parse(query)
