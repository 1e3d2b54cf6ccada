"""Debugging helpers built on top of condition traces.

- field path collection and suggestions for fields that did not resolve
- similarity-based rewriting of field names against a list of known fields
- plain-text rendering of a trace tree
"""

from __future__ import annotations
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .coercion import UNDEFINED, render_value
from .evaluator import ConditionTrace, TraceNode

RESERVED = {"true", "false", "null", "in", "and", "or", "not", "undefined", "nan", "always"}
REWRITE_THRESHOLD = 0.65
_CANDIDATE = re.compile(r"[A-Za-z_][A-Za-z0-9_.]*")


def collect_field_paths(obj: Any, prefix: str = "") -> List[str]:
    """Every dotted path reachable in a nested mapping, parents before children."""
    if not isinstance(obj, Mapping):
        return []
    paths: List[str] = []
    for key, val in obj.items():
        full = f"{prefix}.{key}" if prefix else str(key)
        paths.append(full)
        paths.extend(collect_field_paths(val, full))
    return paths


def suggest_field(unknown_path: str, available_paths: List[str]) -> Optional[str]:
    dotted = unknown_path.replace("_", ".")
    return dotted if dotted in available_paths else None


@dataclass
class UnknownField:
    path: str
    suggestion: Optional[str] = None


def _available_paths(scope: Any) -> List[str]:
    if not isinstance(scope, Mapping):
        return []
    # conditions address output and context fields without their prefix
    paths = collect_field_paths(scope.get("output"))
    paths += collect_field_paths(scope.get("context"))
    paths += collect_field_paths(scope)
    return paths


def unknown_fields(trace: ConditionTrace) -> List[UnknownField]:
    available = _available_paths(trace.debug_context)
    out: List[UnknownField] = []
    for ref in trace.referenced_fields:
        if ref.value is UNDEFINED:
            out.append(UnknownField(ref.path, suggest_field(ref.path, available) if available else None))
    return out


# ---------- Auto rewrite ----------

@dataclass
class KnownField:
    path: str
    label: Optional[str] = None
    aliases: List[str] = field(default_factory=list)


@dataclass
class RewriteChange:
    from_: str
    to: str
    score: float


@dataclass
class RewriteResult:
    original: str
    rewritten: str
    changes: List[RewriteChange]


def _variants(known: KnownField) -> List[str]:
    out = []
    for name in [known.path, *known.aliases]:
        for v in (name, name.replace(".", "_"), name.replace("_", ".")):
            v = v.strip().lower()
            if v not in out:
                out.append(v)
    return out


def _last_segment(s: str) -> str:
    return re.split(r"[._]", s)[-1]


def field_similarity(candidate: str, known: KnownField) -> float:
    """1.0 exact, 0.9 equal ignoring dots and underscores, 0.7 same last segment."""
    c = candidate.strip().lower()
    variants = _variants(known)
    if c in variants:
        return 1.0
    flat = re.sub(r"[._]", "", c)
    if any(re.sub(r"[._]", "", v) == flat for v in variants):
        return 0.9
    last = _last_segment(c)
    if last and any(_last_segment(v) == last for v in variants):
        return 0.7
    return 0.0


def _best_match(candidate: str, fields: List[KnownField]) -> Optional[RewriteChange]:
    if candidate.lower() in RESERVED:
        return None
    best: Optional[RewriteChange] = None
    for f in fields:
        score = field_similarity(candidate, f)
        if score > 0 and (best is None or score > best.score):
            best = RewriteChange(candidate, f.path, score)
    if best is None or best.score < REWRITE_THRESHOLD:
        return None
    return best


def auto_rewrite_expression(expression: str, known_fields: List[KnownField]) -> Optional[RewriteResult]:
    """Propose field renames for ``expression``; ``None`` when nothing would change.

    Text inside quotes is left alone.
    """
    if not expression or not known_fields:
        return None

    spans = []
    for m in _CANDIDATE.finditer(expression):
        before = expression[m.start() - 1] if m.start() > 0 else ""
        after = expression[m.end()] if m.end() < len(expression) else ""
        if before in ("'", '"') or after in ("'", '"'):
            continue
        spans.append(m)

    changes: Dict[str, RewriteChange] = {}
    for m in spans:
        change = _best_match(m.group(0), known_fields)
        if change is None:
            continue
        prev = changes.get(change.from_)
        if prev is None or prev.score < change.score:
            changes[change.from_] = change

    real = {k: c for k, c in changes.items() if c.from_ != c.to}
    if not real:
        return None

    rewritten = expression
    for m in reversed(spans):
        change = real.get(m.group(0))
        if change:
            rewritten = rewritten[:m.start()] + change.to + rewritten[m.end():]
    if rewritten == expression:
        return None
    return RewriteResult(expression, rewritten, list(real.values()))


# ---------- Rendering ----------

def _render_node(node: TraceNode, depth: int, lines: List[str]) -> None:
    pad = "  " * depth
    label = node.kind if node.operator is None else f"{node.kind} {node.operator}"
    line = f"{pad}{label}: {node.raw} => {render_value(node.value)}"
    if node.short_circuited:
        line += " (short-circuited)"
    if node.error:
        line += f"  [{node.error}]"
    lines.append(line)
    for child in node.children:
        _render_node(child, depth + 1, lines)


def render_trace(trace: ConditionTrace) -> str:
    lines = [
        f"{trace.status}: {trace.expression}",
        f"  with values: {trace.expression_with_values}",
    ]
    _render_node(trace.root, 1, lines)
    missing = unknown_fields(trace)
    if missing:
        lines.append("  unknown fields:")
        for f in missing:
            hint = f" (did you mean '{f.suggestion}'?)" if f.suggestion else ""
            lines.append(f"    {f.path}{hint}")
    return "\n".join(lines)
