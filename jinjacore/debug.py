"""Rendering of debug information attached to template errors."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .tokens import Span

_WIDTH = 79


@dataclass
class DebugInfo:
    """A snapshot of the template source and the referenced locals."""

    template_source: Optional[str] = None
    referenced_locals: Dict[str, Any] = field(default_factory=dict)


def _center(text: str, fill: str) -> str:
    pad = max(_WIDTH - len(text), 0)
    left = pad // 2
    return fill * left + text + fill * (pad - left)


def _source_lines(source: str) -> List[str]:
    parts = source.split("\n")
    if parts and parts[-1] == "":
        parts.pop()
    return [p[:-1] if p.endswith("\r") else p for p in parts]


def format_referenced_locals(variables: Mapping[str, Any]) -> str:
    """Formats the referenced variables sorted by name."""
    if not variables:
        return "No referenced variables"
    body = "".join(
        f"    {key}: {variables[key]!r},\n" for key in sorted(variables)
    )
    return "Referenced variables: {\n" + body + "}"


def render_debug_info(
    name: Optional[str],
    kind: Any,
    line: Optional[int],
    span: Optional[Span],
    info: DebugInfo,
) -> str:
    """Renders source context around ``line`` and the referenced locals."""
    out: List[str] = []
    source = info.template_source
    if source is not None:
        basename = re.split(r"[/\\]", name or "")[-1]
        out.append("\n")
        out.append(_center(f" {basename} ", "-") + "\n")
        lines = _source_lines(source)
        idx = max((line or 1) - 1, 0)
        skip = max(idx - 3, 0)
        pre = list(enumerate(lines))[skip : skip + min(3, idx)]
        post = list(enumerate(lines))[idx + 1 : idx + 4]
        for num, text in pre:
            out.append(f"{num + 1:>4} | {text}\n")
        out.append(f"{idx + 1:>4} > {lines[idx]}\n")
        if span is not None and span.start_line == span.end_line:
            carets = "^" * (span.end_col - span.start_col)
            out.append(f"     i {' ' * span.start_col}{carets} {kind}\n")
        for num, text in post:
            out.append(f"{num + 1:>4} | {text}\n")
        out.append("~" * _WIDTH)
    out.append("\n")
    out.append(format_referenced_locals(info.referenced_locals) + "\n")
    out.append("-" * _WIDTH)
    return "".join(out)