"""Human-readable startup banner printed to stdout."""

from static_server.bootstrap.startup import BoundServerInfo


def format_banner(info: BoundServerInfo, copied: bool = False) -> str:
    """Render the startup box listing the local and network URLs."""
    lines = ["Serving!"]
    if info.local_url:
        prefix = "- " if info.network_url else ""
        space = "    " if info.network_url else "  "
        lines.extend(["", f"{prefix}Local:{space}{info.local_url}"])
    if info.network_url:
        lines.append(f"- Network:  {info.network_url}")
    if info.requested_port is not None:
        lines.extend(
            ["", f"This port was picked because {info.requested_port} is in use."]
        )
    if copied:
        lines.extend(["", "Copied local address to clipboard!"])
    return "\n".join(lines)
