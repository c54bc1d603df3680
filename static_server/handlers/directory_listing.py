"""HTML and JSON directory listings."""

import html
import json
import urllib.parse
from pathlib import Path

LISTING_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Files within {title}</title>
</head>
<body>
<h1>Index of {title}</h1>
<ul>
{items}
</ul>
</body>
</html>
"""


def list_entries(directory: Path, url_path: str) -> list[dict[str, str]]:
    """Directories first, then files, each group sorted by name."""
    base = url_path if url_path.endswith("/") else f"{url_path}/"
    entries = []
    for child in sorted(
        directory.iterdir(), key=lambda item: (not item.is_dir(), item.name.lower())
    ):
        is_dir = child.is_dir()
        name = f"{child.name}/" if is_dir else child.name
        entries.append(
            {
                "base": name,
                "relative": base + urllib.parse.quote(name),
                "type": "directory" if is_dir else "file",
            }
        )
    if base != "/":
        parent = base.rstrip("/").rsplit("/", 1)[0] + "/"
        entries.insert(0, {"base": "../", "relative": parent, "type": "directory"})
    return entries


def render_listing(directory: Path, url_path: str) -> bytes:
    items = "\n".join(
        f'<li><a href="{html.escape(entry["relative"], quote=True)}" '
        f'class="{entry["type"]}">{html.escape(entry["base"])}</a></li>'
        for entry in list_entries(directory, url_path)
    )
    return LISTING_TEMPLATE.format(title=html.escape(url_path), items=items).encode()


def render_listing_json(directory: Path, url_path: str) -> bytes:
    return json.dumps(
        {"directory": url_path, "files": list_entries(directory, url_path)}
    ).encode()
