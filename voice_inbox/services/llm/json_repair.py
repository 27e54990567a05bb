"""
Best-effort repair of model JSON output.

Local models running under a bounded token budget regularly stop mid-object.
`repair_json` turns the common failure shapes back into parseable JSON:

    {"a": [1, 2            ->  {"a": [1, 2]}
    {"a": "unterm          ->  {"a": "unterm"}
    {"a": [partial         ->  {"a": []}
    Sure! {"a": 1} Thanks  ->  {"a": 1}
    {"a": [1, 2,], }       ->  {"a": [1, 2] }

It does not guarantee valid JSON; callers still parse and treat failure as
an invalid attempt.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?(.*?)\n?```\s*$", re.DOTALL)
_OPEN_FENCE_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_LITERAL_RE = re.compile(r"-?(?:0|[1-9]\d*)(?:\.\d+)?(?:[eE][+-]?\d+)?|true|false|null")


def strip_code_fence(text: str) -> str:
    s = (text or "").strip()
    m = _FENCE_RE.match(s)
    if m:
        return m.group(1).strip()
    # truncated output may open a fence and never close it
    if s.startswith("```"):
        return _OPEN_FENCE_RE.sub("", s, count=1).strip()
    return s


@dataclass
class _ScanState:
    in_string: bool = False
    escaped: bool = False
    stack: list[str] = field(default_factory=list)
    last_struct: int = -1  # last structural char outside a string
    last_string_end: int = -1
    string_is_key: bool = False  # the current / most recent string sits in key position
    top_level_end: int = -1  # index of the `}` closing the outermost object


def _scan(s: str) -> _ScanState:
    st = _ScanState()
    for i, ch in enumerate(s):
        if st.in_string:
            if st.escaped:
                st.escaped = False
            elif ch == "\\":
                st.escaped = True
            elif ch == '"':
                st.in_string = False
                st.last_string_end = i
            continue

        if ch == '"':
            st.in_string = True
            prev = s[st.last_struct] if st.last_struct >= 0 else ""
            st.string_is_key = bool(st.stack) and st.stack[-1] == "{" and prev in ("{", ",")
        elif ch in "{[":
            st.stack.append(ch)
            st.last_struct = i
        elif ch in "}]":
            if st.stack:
                st.stack.pop()
            st.last_struct = i
            if not st.stack and ch == "}" and st.top_level_end < 0:
                st.top_level_end = i
        elif ch in ",:":
            st.last_struct = i
    return st


def remove_trailing_commas(s: str) -> str:
    out: list[str] = []
    in_string = False
    escaped = False
    n = len(s)
    for i, ch in enumerate(s):
        if in_string:
            out.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == ",":
            j = i + 1
            while j < n and s[j].isspace():
                j += 1
            if j >= n or s[j] in "}]":
                continue
        out.append(ch)
    return "".join(out)


def repair_json(text: str) -> str:
    s = strip_code_fence(text)
    start = s.find("{")
    if start < 0:
        return s
    s = s[start:]

    st = _scan(s)
    if st.top_level_end >= 0:
        # complete object followed by prose
        return remove_trailing_commas(s[: st.top_level_end + 1])

    if st.in_string:
        if st.escaped:
            s = s[:-1]
        s += '"'
        st = _scan(s)
    else:
        # a bare token after the last structural char that isn't a JSON literal
        # is a truncated element ("tru", "1.", "partial")
        tail_start = max(st.last_struct, st.last_string_end) + 1
        tail = s[tail_start:].strip()
        if tail and not _LITERAL_RE.fullmatch(tail):
            s = s[:tail_start]
            st = _scan(s)

    s = s.rstrip()
    if st.stack and st.stack[-1] == "{":
        if s.endswith(":"):
            s += " null"
        elif st.string_is_key and st.last_string_end == len(s) - 1:
            s += ": null"
    if s.endswith(","):
        s = s[:-1]

    st = _scan(s)
    closers = "".join("}" if c == "{" else "]" for c in reversed(st.stack))
    return remove_trailing_commas(s + closers)
