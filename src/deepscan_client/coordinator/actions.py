"""Quick-fix code actions for DeepScan diagnostics."""

from __future__ import annotations

import html
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..lsp.protocol import Diagnostic
from .commands import CommandIds
from .host import TextDocument
from .resources import Rule, RuleCatalog

SOURCE = "deepscan"
QUICK_FIX = "quickfix"


class Command(BaseModel):
    title: str
    command: str
    arguments: List[Any] = Field(default_factory=list)


class TextEdit(BaseModel):
    range: Dict[str, Any]
    new_text: str = Field(alias="newText")

    model_config = ConfigDict(populate_by_name=True)


class CodeAction(BaseModel):
    title: str
    kind: str = QUICK_FIX
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    command: Optional[Command] = None
    edits: Dict[str, List[TextEdit]] = Field(default_factory=dict)


def _deepscan_diagnostics(diagnostics: List[Diagnostic]) -> List[Diagnostic]:
    return [d for d in diagnostics if d.source == SOURCE and d.code is not None]


def _position(line: int, character: int) -> Dict[str, int]:
    return {"line": line, "character": character}


def render_rule(rule: Rule, style: str) -> str:
    """Render a rule description page."""
    tags = "".join(f"<span class=\"tag\">{html.escape(tag)}</span>" for tag in rule.tags)
    severity = ", ".join(html.escape(s) for s in rule.severity)
    parts = [
        "<!DOCTYPE html>",
        "<html><head><meta charset=\"utf-8\">",
        f"<style>{style}</style>" if style else "",
        "</head><body>",
        f"<h1>{html.escape(rule.key)}</h1>",
        f"<div class=\"name\">{html.escape(rule.name)}</div>" if rule.name else "",
        f"<div class=\"severity\">{severity}</div>" if severity else "",
        f"<div class=\"tags\">{tags}</div>" if tags else "",
        f"<div class=\"description\">{html.escape(rule.description)}</div>",
        f"<pre class=\"examples\">{html.escape(rule.examples)}</pre>" if rule.examples else "",
        "</body></html>",
    ]
    return "\n".join(part for part in parts if part)


class ShowRuleCodeActionProvider:
    """Offers "Show rule" for diagnostics whose rule is in the catalog."""

    def __init__(self, catalog: RuleCatalog, style: str = ""):
        self.catalog = catalog
        self.style = style

    def provide_code_actions(self, document: TextDocument, diagnostics: List[Diagnostic]) -> List[CodeAction]:
        actions: List[CodeAction] = []
        seen = set()
        for diagnostic in _deepscan_diagnostics(diagnostics):
            rule = self.catalog.find(diagnostic.code)
            if rule is None or rule.key in seen:
                continue
            seen.add(rule.key)
            actions.append(CodeAction(
                title=f"Show rule {rule.key}",
                diagnostics=[diagnostic],
                command=Command(
                    title=f"Show rule {rule.key}",
                    command=CommandIds.SHOW_RULE,
                    arguments=[rule.key],
                ),
            ))
        return actions

    def render(self, key: str) -> Optional[str]:
        rule = self.catalog.find(key)
        if rule is None:
            return None
        return render_rule(rule, self.style)


class DisableRulesCodeActionProvider:
    """Offers inline and file-wide suppression comments."""

    def provide_code_actions(self, document: TextDocument, diagnostics: List[Diagnostic]) -> List[CodeAction]:
        lines = document.text.split("\n")
        actions: List[CodeAction] = []
        for diagnostic in _deepscan_diagnostics(diagnostics):
            key = str(diagnostic.code)
            line = diagnostic.start_line()
            end = len(lines[line]) if line < len(lines) else 0
            actions.append(CodeAction(
                title=f"Disable rule {key} in this line",
                diagnostics=[diagnostic],
                edits={document.uri: [TextEdit(
                    range={"start": _position(line, end), "end": _position(line, end)},
                    new_text=f" // deepscan-disable-line {key}",
                )]},
            ))
            actions.append(CodeAction(
                title=f"Disable rule {key} in this file",
                diagnostics=[diagnostic],
                edits={document.uri: [TextEdit(
                    range={"start": _position(0, 0), "end": _position(0, 0)},
                    new_text=f"/* deepscan-disable {key} */\n",
                )]},
            ))
        return actions
