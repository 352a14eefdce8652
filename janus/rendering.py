"""Jinja2 rendering of source templates."""

from __future__ import annotations

from typing import Any, Mapping

from jinja2 import Environment, StrictUndefined, TemplateError

from .errors import RenderError

TEMPLATE_MARKERS = ("{{", "{%", "{#")


class TemplateRenderer:
    """Renders a template body against a flat variable mapping."""

    def __init__(self) -> None:
        self._env = Environment(
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, src: str, body: str, variables: Mapping[str, Any]) -> str:
        try:
            template = self._env.from_string(body)
            return template.render(dict(variables))
        except TemplateError as exc:
            raise RenderError(src, str(exc)) from exc


def has_template_syntax(line: str) -> bool:
    return any(marker in line for marker in TEMPLATE_MARKERS)


__all__ = ["TEMPLATE_MARKERS", "TemplateRenderer", "has_template_syntax"]
