"""
Query Engine - literal and glob search over formatted snapshot text.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Set

logger = logging.getLogger("tabpilot")

# Lines starting with these roles are structure only and never count as context
SKIP_ROLES = frozenset({
    "generic", "none", "group", "main", "navigation", "contentinfo",
    "search", "banner", "complementary", "region", "article", "section",
    "InlineTextBox",
})

GROUP_GAP = 2
GROUP_SEPARATOR = "\n----\n"
MATCH_MARK = "✓"

_GLOB_CHARS = re.compile(r"[*?\[\]{}]")
_FIRST_VISIBLE = re.compile(r"^(\s*)(\S)")


@dataclass
class SearchResult:
    """Line indices produced by a snapshot text search."""
    matched_lines: List[int] = field(default_factory=list)
    context_lines: List[int] = field(default_factory=list)
    total_matches: int = 0


def has_glob_pattern(term: str) -> bool:
    return bool(_GLOB_CHARS.search(term))


def parse_search_query(query: str) -> List[str]:
    """Split a ``a|b|c`` query into its non-blank terms."""
    return [term.strip() for term in query.split("|") if term.strip()]


def _expand_braces(pattern: str) -> List[str]:
    start = pattern.find("{")
    if start == -1:
        return [pattern]
    end = pattern.find("}", start)
    if end == -1:
        return [pattern]
    prefix, body, suffix = pattern[:start], pattern[start + 1:end], pattern[end + 1:]
    expanded: List[str] = []
    for alternative in body.split(","):
        expanded.extend(_expand_braces(prefix + alternative + suffix))
    return expanded


def glob_to_regex(pattern: str) -> str:
    """Translate one brace-free glob into an unanchored regular expression."""
    parts: List[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        elif char == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                parts.append(re.escape(char))
            else:
                body = pattern[i + 1:end]
                negate = body.startswith("!")
                if negate:
                    body = body[1:]
                body = body.replace("\\", "\\\\")
                # A leading caret is a literal, "!" is the only negation.
                if body.startswith("^"):
                    body = "\\" + body
                parts.append("[" + ("^" if negate else "") + body + "]")
                i = end
        else:
            parts.append(re.escape(char))
        i += 1
    return "".join(parts)


def match_glob(text: str, pattern: str, case_sensitive: bool = False) -> bool:
    """
    True when pattern matches anywhere in text.
    
    Supports ``*``, ``?``, ``[abc]``/``[!abc]`` classes and ``{a,b}`` alternatives.
    Invalid patterns never match.
    """
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        for expanded in _expand_braces(pattern):
            if re.search(glob_to_regex(expanded), text, flags):
                return True
    except re.error as e:
        logger.warning(f"Invalid glob pattern {pattern!r}: {e}")
        return False
    return False


def _line_matches(line: str, terms: List[str], use_glob: bool, case_sensitive: bool) -> bool:
    for term in terms:
        if use_glob:
            if match_glob(line, term, case_sensitive):
                return True
        elif case_sensitive:
            if term in line:
                return True
        elif term.lower() in line.lower():
            return True
    return False


def is_structural_line(line: str) -> bool:
    stripped = line.strip()
    return any(stripped.startswith(role) for role in SKIP_ROLES)


def search_snapshot_text(
    text: str,
    query: str,
    context_levels: int = 1,
    case_sensitive: bool = False,
    use_glob: Optional[bool] = None,
) -> SearchResult:
    """
    Search formatted snapshot text.
    
    Terms separated by ``|`` are OR-ed. Glob matching is used when
    ``use_glob`` is True, or when left as None and any term contains a glob
    metacharacter. Each match pulls in up to ``context_levels`` non-structural
    lines before and after it.
    """
    if context_levels < 0:
        raise ValueError("context_levels must not be negative")
    terms = parse_search_query(query)
    if not terms:
        return SearchResult()
    if use_glob is None:
        use_glob = any(has_glob_pattern(term) for term in terms)
    
    lines = text.split("\n")
    matched = [
        index for index, line in enumerate(lines)
        if _line_matches(line, terms, use_glob, case_sensitive)
    ]
    
    context: Set[int] = set()
    for index in matched:
        context.add(index)
        _collect_context(lines, index, -1, context_levels, context)
        _collect_context(lines, index, 1, context_levels, context)
    
    return SearchResult(
        matched_lines=matched,
        context_lines=sorted(context),
        total_matches=len(matched),
    )


def _collect_context(lines: List[str], start: int, step: int, levels: int, context: Set[int]) -> None:
    collected = 0
    index = start + step
    while 0 <= index < len(lines) and collected < levels:
        if not is_structural_line(lines[index]):
            context.add(index)
            collected += 1
        index += step


def format_search_results(text: str, result: SearchResult, query: str) -> str:
    """
    Group context lines into blocks and mark matched lines.
    
    A gap of more than two lines starts a new block; blocks are separated
    by ``----``.
    """
    if result.total_matches == 0:
        return f"No matches found for: {query}"
    
    lines = text.split("\n")
    matched = set(result.matched_lines)
    groups: List[List[str]] = []
    current: List[str] = []
    last_index: Optional[int] = None
    
    for index in result.context_lines:
        line = lines[index] if index < len(lines) else ""
        if not line:
            continue
        if current and last_index is not None and index - last_index > GROUP_GAP:
            groups.append(current)
            current = []
        if index in matched:
            line = _FIRST_VISIBLE.sub(lambda m: m.group(1) + MATCH_MARK + m.group(2), line, count=1)
        current.append(line)
        last_index = index
    if current:
        groups.append(current)
    
    return GROUP_SEPARATOR.join("\n".join(group) for group in groups)
