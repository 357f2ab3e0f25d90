"""Sidebar navigation markup and the full page template."""

from __future__ import annotations

import html
from typing import List

from .config import LIVERELOAD_PATH, RELOAD_MESSAGE
from .nav import NavNode


def render_nav_html(nodes: List[NavNode], current_path: str) -> str:
    """Render nested <ul> navigation, marking the entry for current_path as active."""
    items: List[str] = []
    for node in nodes:
        is_active = node.path == current_path
        active_cls = "active" if is_active else ""
        aria = ' aria-current="page"' if is_active else ""
        item = (
            f'<li><a href="{html.escape(node.path)}" class="{active_cls}"{aria}>'
            f"{html.escape(node.name)}</a>"
        )
        if node.children:
            item += render_nav_html(node.children, current_path)
        items.append(item + "</li>")
    return f"<ul>{''.join(items)}</ul>"


LIVERELOAD_SNIPPET = f"""
    <script>
      const evtSource = new EventSource("{LIVERELOAD_PATH}");
      evtSource.onmessage = function(event) {{
        if (event.data === "{RELOAD_MESSAGE}") {{
          console.log("Reloading page...");
          window.location.reload();
        }}
      }};
      evtSource.onerror = function() {{
        // EventSource reconnects on its own
        console.log("Live reload connection error. Retrying...");
      }};
    </script>"""


def render_page_html(
    title: str,
    content_html: str,
    nav_html: str,
    live_reload: bool = False,
    site_title: str = "",
) -> str:
    """Render a complete, self-contained page with inline styles."""
    title_text = html.escape(f"{title} · {site_title}" if site_title else title)
    return f"""<!doctype html>
<html lang="en">
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{title_text}</title>
    <style>
      body {{
        font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif;
        line-height: 1.6;
        margin: 0;
        color: #333;
      }}
      .container {{ display: flex; min-height: 100vh; }}
      .sidebar {{
        width: 220px;
        min-width: 220px;
        border-right: 1px solid #e0e0e0;
        padding: 2em;
        background-color: #f9f9f9;
      }}
      .sidebar h2 {{
        font-size: 1.1em;
        margin: 0 0 1em 0;
        color: #555;
        text-transform: uppercase;
        letter-spacing: .5px;
      }}
      .sidebar ul {{ list-style: none; padding: 0; margin: 0; }}
      .sidebar ul ul {{ padding-left: 1em; border-left: 1px solid #eee; margin: .5em 0 0 .2em; }}
      .sidebar li {{ margin-bottom: .5em; }}
      .sidebar a {{ color: #333; display: block; padding: .2em 0; }}
      .sidebar a:hover {{ color: #007bff; text-decoration: none; }}
      .sidebar a.active {{ font-weight: bold; color: #007bff; }}
      main {{ flex-grow: 1; padding: 2em 3em; max-width: 800px; }}
      main img {{ max-width: 100%; height: auto; border-radius: 4px; }}
      h1, h2, h3 {{ line-height: 1.2; }}
      pre {{
        background: #f4f4f4;
        padding: 1em;
        border-radius: 5px;
        overflow-x: auto;
        border: 1px solid #ddd;
      }}
      code {{ font-family: ui-monospace, SFMono-Regular, Consolas, "Liberation Mono", Menlo, monospace; }}
      a {{ color: #007bff; text-decoration: none; }}
      a:hover {{ text-decoration: underline; }}
    </style>
  </head>
  <body>
    <div class="container">
      <aside class="sidebar">
        <h2>Navigation</h2>
        {nav_html}
      </aside>
      <main>
{content_html}
      </main>
    </div>{LIVERELOAD_SNIPPET if live_reload else ''}
  </body>
</html>
"""
