"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


def server_command(directory: Path, *extra_args: str) -> list[str]:
    """Build the command line that starts the server on ``directory``."""

    return [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        str(directory),
        "--no-clipboard",
        *extra_args,
    ]


def _launch_server(
    host: str,
    port: int,
    directory: Path,
    extra_args: list[str] | None = None,
    log_file: Path | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    args = server_command(directory, "--listen", f"tcp://{host}:{port}")
    if log_file:
        args.extend(["--log-destination", str(log_file)])
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            # If startup failed, print stdout/stderr to help debug
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        service_url = f"http://{host}:{port}"
        yield {
            "base_url": service_url,
            "host": host,
            "port": port,
            "directory": directory,
            "process": process,
            "log_file": log_file,
        }

        process.terminate()
        try:
            process.wait(timeout=15)
        except subprocess.TimeoutExpired:
            process.kill()


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen[str]
    log_file: Path | None


def populate_site(directory: Path) -> Path:
    """Write a small static site used by the integration tests."""

    directory.mkdir(parents=True, exist_ok=True)
    (directory / "index.html").write_text("<h1>home</h1>\n", encoding="utf-8")
    (directory / "app.js").write_text("console.log('x');\n" * 200, encoding="utf-8")
    (directory / "data.bin").write_bytes(bytes(range(256)))
    docs = directory / "docs"
    docs.mkdir()
    (docs / "guide.txt").write_text("guide\n", encoding="utf-8")
    return directory


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture(name="server_process")
def _server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the static server in a background process for integration tests."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = populate_site(tmp_path_factory.mktemp("site"))
    log_file = tmp_path_factory.mktemp("logs") / "server.log"
    yield from _launch_server(host, port, directory, log_file=log_file)


@pytest.fixture(name="cors_server_process")
def _cors_server_process(
    tmp_path_factory: "TempPathFactory",
) -> Generator[ServerProcessInfo, None, None]:
    """Launch the static server with CORS and single-page fallback enabled."""

    host = "127.0.0.1"
    port = reserve_port(host)
    directory = populate_site(tmp_path_factory.mktemp("site-cors"))
    log_file = tmp_path_factory.mktemp("logs-cors") / "server.log"
    yield from _launch_server(
        host, port, directory, ["--cors", "--single"], log_file=log_file
    )


@pytest.fixture()
def site_directory(tmp_path: Path) -> Path:
    """Provide a populated temporary site for in-process tests."""

    return populate_site(tmp_path / "site")


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""

    return server_process["base_url"]
