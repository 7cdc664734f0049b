from __future__ import annotations

import glob
import hashlib
import os
from dataclasses import dataclass
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from .log import Level, log_event, log_exception
from .runtime import ServiceTopology
from .settings import settings


class TemplateRenderError(Exception):
    def __init__(self, template: str, cause: BaseException):
        super().__init__(f"Failed to render template {template}: {type(cause).__name__}: {cause}")
        self.template = template
        self.cause = cause


def digest(data: bytes) -> str:
    return hashlib.sha1(data).hexdigest()


def digest_file(path: str) -> str | None:
    try:
        with open(path, "rb") as f:
            return digest(f.read())
    except OSError:
        # Missing or unreadable destinations count as changed.
        return None


@dataclass(frozen=True)
class RenderedConfig:
    template: str
    destination: str
    content: bytes

    @property
    def digest(self) -> str:
        return digest(self.content)


def discover_templates(config_dir: str, suffix: str) -> dict[str, str]:
    """Map each ``*<suffix>`` file in *config_dir* to its destination path."""
    templates = sorted(glob.glob(os.path.join(glob.escape(config_dir), "*" + suffix)))
    return {t: t[: -len(suffix)] for t in templates if os.path.isfile(t)}


class ConfigReconciler:
    """Renders the template set and writes only what actually changed."""

    def __init__(
        self,
        config_dir: str | None = None,
        template_suffix: str | None = None,
        supervisor: Any = None,
    ):
        self.config_dir = config_dir or settings.config_dir
        self.template_suffix = template_suffix or settings.template_suffix
        self.supervisor = supervisor
        self.env = Environment(
            loader=FileSystemLoader(self.config_dir),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
            autoescape=False,
        )

    @property
    def config_files(self) -> dict[str, str]:
        return discover_templates(self.config_dir, self.template_suffix)

    def render(self, template: str, topology: ServiceTopology) -> str:
        name = os.path.relpath(template, self.config_dir)
        return self.env.get_template(name).render(images=topology)

    def render_all(self, topology: ServiceTopology) -> list[RenderedConfig]:
        """Render every template, or raise TemplateRenderError on the first failure."""
        out: list[RenderedConfig] = []
        for template, destination in self.config_files.items():
            try:
                text = self.render(template, topology)
            except Exception as e:
                raise TemplateRenderError(template, e) from e
            out.append(RenderedConfig(template=template, destination=destination, content=text.encode("utf-8")))
        return out

    def reconcile(self, topology: ServiceTopology) -> bool:
        """Bring the destination files in line with *topology*.

        All templates are rendered before anything is written; a render
        failure leaves every destination untouched. Returns True when at
        least one file was written.
        """
        try:
            rendered = self.render_all(topology)
        except TemplateRenderError as e:
            log_exception(f"Failed to render template {e.template}", e.cause)
            return False

        changed = False
        for cfg in rendered:
            if digest_file(cfg.destination) == cfg.digest:
                continue
            log_event(Level.INFO, f"Writing updated config {cfg.template} -> {cfg.destination}")
            try:
                with open(cfg.destination, "wb") as f:
                    f.write(cfg.content)
            except OSError as e:
                log_event(Level.ERROR, f"Writing {cfg.destination} failed: {type(e).__name__}: {e}")
                continue
            changed = True
        return changed

    def update(self, topology: ServiceTopology) -> bool:
        """Reconcile and reload the proxy when something changed."""
        changed = self.reconcile(topology)
        if changed and self.supervisor is not None:
            self.supervisor.upgrade()
        return changed
