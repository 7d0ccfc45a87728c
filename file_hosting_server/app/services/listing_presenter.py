from html import escape
from typing import List
from urllib.parse import quote

from app.services.directory_walker import Node

FILES_PREFIX = "/files"

_PAGE_STYLE = """
      body { font-family: Arial, sans-serif; margin: 20px; }
      .breadcrumbs { margin-bottom: 20px; }
      ul { list-style-type: none; padding-left: 20px; }
      li { margin: 5px 0; }
      .download-speed { position: fixed; top: 10px; right: 10px; }
"""


def file_url(relative_path: str, is_directory: bool = False) -> str:
    url = FILES_PREFIX
    if relative_path:
        url += "/" + quote(relative_path, safe="/")
    return url + "/" if is_directory else url


def speed_limit_text(enabled: bool, mbps: float) -> str:
    if enabled:
        return f"Download speed limit: {mbps:g}Mbps"
    return "Speed limit disabled"


def render_breadcrumbs(relative_path: str) -> str:
    crumbs = [f'<a href="{FILES_PREFIX}/">Home</a>']
    walked: List[str] = []
    for segment in [s for s in relative_path.split("/") if s]:
        walked.append(segment)
        crumbs.append(f'<a href="{file_url("/".join(walked), True)}">{escape(segment)}</a>')
    return " / ".join(crumbs)


def render_tree(node: Node) -> str:
    """Render the children of node as nested <li> items."""
    # Iterative so render depth matches what the walker allows
    parts: List[str] = []
    stack: List[object] = list(reversed(node.children))
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            parts.append(item)
            continue
        name = escape(item.name)
        if item.is_directory:
            parts.append(f'<li>&#128193; <a href="{file_url(item.relative_path, True)}">{name}/</a>')
            if item.children:
                stack.append("</ul></li>")
                stack.extend(reversed(item.children))
                parts.append("<ul>")
            else:
                parts.append("</li>")
        else:
            parts.append(f'<li>&#128196; <a href="{file_url(item.relative_path)}">{name}</a></li>')
    return "\n".join(parts)


def render_listing(node: Node, speed_limit_enabled: bool, speed_limit_mbps: float) -> str:
    """Full HTML page for a directory listing."""
    current = "/" + node.relative_path if node.relative_path else "/"
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>Files List - {escape(current)}</title>
    <style>{_PAGE_STYLE}    </style>
  </head>
  <body>
    <div class="breadcrumbs">{render_breadcrumbs(node.relative_path)}</div>
    <div class="download-speed">{speed_limit_text(speed_limit_enabled, speed_limit_mbps)}</div>
    <h2>Current directory: {escape(current)}</h2>
    <ul>
{render_tree(node)}
    </ul>
  </body>
</html>
"""


def render_index(speed_limit_enabled: bool, speed_limit_mbps: float) -> str:
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <title>File Hosting</title>
  </head>
  <body>
    <h1>Private File Hosting</h1>
    <p>{speed_limit_text(speed_limit_enabled, speed_limit_mbps)}</p>
    <p><a href="{FILES_PREFIX}">Browse files</a></p>
  </body>
</html>
"""
