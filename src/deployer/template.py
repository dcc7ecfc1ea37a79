"""Render manifest templates against pipeline metadata with Jinja2."""

from __future__ import annotations

import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

import jinja2
from jinja2.exceptions import FilterArgumentError

from .context import ReconcileContext
from .errors import TemplateError, TemplateIOError

DEFAULT_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

_UNDEFINED_NAME_PATTERN = re.compile(r"^'([^']+)' is undefined")
_UNDEFINED_ATTRIBUTE_PATTERN = re.compile(r"has no attribute '([^']+)'")


def _to_seconds(value: Any, filter_name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise FilterArgumentError(
            f"{filter_name} expects a unix timestamp, got {value!r}"
        ) from exc


def format_duration(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{minutes}m{secs}s"
    return f"{secs}s"


def _uppercasefirst(value: Any) -> str:
    text = str(value)
    return text[:1].upper() + text[1:]


def _datetime(value: Any, fmt: str = DEFAULT_DATETIME_FORMAT) -> str:
    stamp = _to_seconds(value, "datetime")
    try:
        moment = datetime.fromtimestamp(stamp, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as exc:
        raise FilterArgumentError(f"datetime cannot represent timestamp {stamp}: {exc}") from exc
    return moment.strftime(fmt)


def _duration(start: Any, end: Any) -> str:
    return format_duration(_to_seconds(end, "duration") - _to_seconds(start, "duration"))


def _since(start: Any) -> str:
    return format_duration(int(time.time()) - _to_seconds(start, "since"))


class TemplateRenderer:
    """Substitutes ``{{ repo.* }}``, ``{{ build.* }}``, ``{{ job.* }}`` and
    ``{{ namespace }}`` into a manifest template.

    Unknown variables are errors rather than empty strings, and the rendered
    text is trimmed of surrounding whitespace.
    """

    def __init__(self) -> None:
        self._env = jinja2.Environment(
            loader=jinja2.BaseLoader(),
            undefined=jinja2.StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self._env.filters.update(
            {
                "uppercase": lambda value: str(value).upper(),
                "lowercase": lambda value: str(value).lower(),
                "uppercasefirst": _uppercasefirst,
                "datetime": _datetime,
                "duration": _duration,
                "since": _since,
            }
        )

    def render(self, source: str, context: ReconcileContext) -> str:
        try:
            template = self._env.from_string(source)
        except jinja2.TemplateSyntaxError as exc:
            raise TemplateError(f"invalid template syntax on line {exc.lineno}: {exc.message}") from exc
        try:
            rendered = template.render(**context.template_vars())
        except jinja2.UndefinedError as exc:
            identifier = _undefined_identifier(str(exc))
            if identifier:
                message = f"unknown template variable '{identifier}': {exc}"
            else:
                message = f"unknown template variable: {exc}"
            raise TemplateError(message, identifier=identifier) from exc
        except jinja2.TemplateError as exc:
            raise TemplateError(f"template rendering failed: {exc}") from exc
        except (ArithmeticError, TypeError, ValueError, OSError) as exc:
            # Raised by expressions in the template itself, e.g. division by zero.
            raise TemplateError(f"template rendering failed: {type(exc).__name__}: {exc}") from exc
        return rendered.strip()

    def render_file(self, path: Union[str, Path], context: ReconcileContext) -> str:
        return self.render(read_template(path), context)


def read_template(path: Union[str, Path]) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        reason = getattr(exc, "strerror", None) or str(exc)
        raise TemplateIOError(str(path), reason) from exc


def _undefined_identifier(message: str) -> Optional[str]:
    for pattern in (_UNDEFINED_ATTRIBUTE_PATTERN, _UNDEFINED_NAME_PATTERN):
        match = pattern.search(message)
        if match:
            return match.group(1)
    return None


__all__ = ["TemplateRenderer", "format_duration", "read_template"]
