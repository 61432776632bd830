import asyncio
import subprocess
from pathlib import Path
from typing import List, Tuple

import pytest

from segmerge.config import Settings


async def _call_app(app, method: str, path: str, *, headers=None, body: bytes = b"", query: str = "") -> Tuple[int, dict, bytes]:
    headers = list(headers or [])
    if body and not any(k.lower() == "content-type" for k, _ in headers):
        headers.append(("Content-Type", "application/json"))
    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("ascii"),
        "root_path": "",
        "query_string": query.encode("ascii"),
        "headers": [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers],
        "client": ("testclient", 123),
        "server": ("testserver", 80),
        "scheme": "http",
    }

    request_complete = False
    response_status = None
    response_headers = []
    response_body = bytearray()
    response_complete = asyncio.Event()

    async def receive():
        nonlocal request_complete
        if request_complete:
            await response_complete.wait()
            return {"type": "http.disconnect"}
        request_complete = True
        return {"type": "http.request", "body": body, "more_body": False}

    async def send(message):
        nonlocal response_status, response_headers
        if message["type"] == "http.response.start":
            response_status = message["status"]
            response_headers = message.get("headers", [])
        elif message["type"] == "http.response.body":
            response_body.extend(message.get("body", b""))
            if not message.get("more_body", False):
                response_complete.set()

    await app(scope, receive, send)

    headers_dict = {k.decode("latin-1"): v.decode("latin-1") for k, v in response_headers}
    return response_status or 500, headers_dict, bytes(response_body)


def call_app(app, method: str, path: str, *, headers=None, body: bytes = b"", query: str = "") -> Tuple[int, dict, bytes]:
    return asyncio.run(_call_app(app, method, path, headers=headers, body=body, query=query))


class FakeFFmpeg:
    """Stands in for ``subprocess.run``: records calls and writes the output file."""

    def __init__(self, *, returncode: int = 0, output: str = "ffmpeg version n6.0\nmuxing done\n"):
        self.returncode = returncode
        self.output = output
        self.calls: List[dict] = []

    def __call__(self, cmd, **kwargs):
        manifest = Path(cmd[cmd.index("-i") + 1])
        self.calls.append(
            {
                "cmd": list(cmd),
                "kwargs": kwargs,
                "manifest_path": manifest,
                "manifest": manifest.read_text(encoding="utf-8"),
            }
        )
        Path(cmd[-1]).write_bytes(b"merged")
        return subprocess.CompletedProcess(cmd, self.returncode, stdout=self.output, stderr=None)


@pytest.fixture()
def video_root(tmp_path: Path) -> Path:
    root = tmp_path / "videos"
    (root / "show").mkdir(parents=True)
    (root / "show" / "part1.mp4").write_bytes(b"one")
    (root / "show" / "part2.mp4").write_bytes(b"two")
    return root


@pytest.fixture()
def work_dir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture()
def settings(video_root: Path, work_dir: Path, tmp_path: Path) -> Settings:
    return Settings(
        VIDEO_ROOT=video_root,
        FFMPEG_TIMEOUT_SECONDS=60,
        WORK_DIR=work_dir,
        STATIC_DIR=tmp_path / "no-static",
    )


@pytest.fixture()
def fake_ffmpeg() -> FakeFFmpeg:
    return FakeFFmpeg()
