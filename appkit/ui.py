# =============================================================================
# appkit/ui.py  -  UI resource definitions (widgets rendered by the host)
# =============================================================================
#
# WHAT THIS MODULE DOES:
#   Describes an HTML widget a tool can bind to (ToolDef.ui = "<key>").  The
#   transport registers each one as a resource at `ui://{app}/{key}`.
#
#   `html` is either inline markup (starts with "<") or a path to an
#   already-built HTML file, resolved against the working directory.
#   Building that file is out of scope; this module only reads it.
# =============================================================================

from dataclasses import dataclass, field
from pathlib import Path

MCP_UI_MIME_TYPE = "text/html;profile=mcp-app"
OPENAI_UI_MIME_TYPE = "text/html+skybridge"


@dataclass(frozen=True)
class CSPConfig:
    """Domains the widget is allowed to reach."""

    connect_domains: list[str] = field(default_factory=list)
    resource_domains: list[str] = field(default_factory=list)
    redirect_domains: list[str] = field(default_factory=list)
    frame_domains: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class UIDef:
    html: str
    name: str | None = None
    description: str | None = None
    csp: CSPConfig | None = None
    prefers_border: bool | None = None
    domain: str | None = None

    @property
    def is_inline(self) -> bool:
        return self.html.lstrip().startswith("<")

    def read_html(self, key: str) -> str:
        """Return the widget markup, reading it from disk if needed."""
        if self.is_inline:
            return self.html
        path = Path.cwd() / self.html
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise FileNotFoundError(f'Failed to read UI resource "{key}" from {path}: {exc}') from exc


def ui_uri(app_name: str, key: str) -> str:
    return f"ui://{app_name}/{key}"
