import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Sequence

from .config import Settings
from .errors import (
    InfrastructureError,
    InsufficientStorageError,
    InvalidMergeRequest,
    ResourceBusyError,
    ToolExecutionError,
    ToolTimeoutError,
)
from .logging_setup import flush_logs, struct_logger
from .paths import client_parent_dir, escape_concat_path, resolve_under_root, to_client_path

logger = logging.getLogger("segmerge.merge")

MIN_MERGE_FILES = 2
DEFAULT_EXTENSION = ".mp4"

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass(frozen=True)
class MergeResult:
    output_name: str
    output_path: Path
    diagnostics: str
    started_at: int
    duration_seconds: float


def build_manifest(paths: Sequence[Path]) -> str:
    """Render concat demuxer lines, one ``file '<path>'`` per input, in order."""
    return "".join(f"file '{escape_concat_path(path)}'\n" for path in paths)


def output_name_for(first: str, timestamp: int) -> str:
    """``<stem>_merged_<timestamp><ext>`` from the first requested file."""
    name = PurePosixPath(first).name
    dot = name.rfind(".")
    # A leading dot (dotfile) or trailing dot names no container
    if 0 < dot < len(name) - 1:
        stem, ext = name[:dot], name[dot:]
    else:
        stem, ext = name, DEFAULT_EXTENSION
    return f"{stem}_merged_{timestamp}{ext}"


def build_ffmpeg_command(binary: str, manifest: Path, output: Path) -> List[str]:
    return [
        binary,
        "-f", "concat",
        "-safe", "0",
        "-i", str(manifest),
        "-c", "copy",
        "-bsf:a", "aac_adtstoasc",
        "-y",
        str(output),
    ]


def _decode(data) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return str(data)


class MergeOrchestrator:
    """Runs one concatenation job at a time against the configured video root.

    ``runner`` defaults to :func:`subprocess.run` and ``clock`` to
    :func:`time.time`; both are injectable for tests.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        runner: Optional[Runner] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.settings = settings
        self._runner = runner
        self._clock = clock or time.time
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def request_merge(self, files: Sequence[str]) -> MergeResult:
        started_at = int(self._clock())
        files = list(files)
        if len(files) < MIN_MERGE_FILES:
            struct_logger.info("merge_rejected", reason="too_few_files", count=len(files))
            raise InvalidMergeRequest(f"At least {MIN_MERGE_FILES} files are required to merge")

        if not self._lock.acquire(blocking=False):
            struct_logger.info("merge_rejected", reason="busy", count=len(files))
            raise ResourceBusyError()
        try:
            return self._merge_locked(files, started_at)
        finally:
            self._lock.release()

    def _merge_locked(self, files: List[str], started_at: int) -> MergeResult:
        root = self.settings.VIDEO_ROOT
        resolved = [resolve_under_root(root, rel) for rel in files]
        manifest_text = build_manifest(resolved)

        output_dir = client_parent_dir(root, files[0])
        output_path = output_dir / output_name_for(files[0], started_at)
        self._check_disk_space(output_dir)

        logger.info("--- Starting merge of %d files ---", len(files))
        struct_logger.info(
            "merge_started",
            count=len(files),
            first=files[0],
            output=to_client_path(root, output_path),
        )

        perf_start = time.perf_counter()
        manifest = self._write_manifest(manifest_text)
        try:
            cmd = build_ffmpeg_command(self.settings.FFMPEG_BINARY, manifest, output_path)
            diagnostics = self._run_tool(cmd, output_path)
        finally:
            self._remove_manifest(manifest)

        duration = time.perf_counter() - perf_start
        logger.info("Merge succeeded: %s", output_path.name)
        struct_logger.info(
            "merge_succeeded",
            output=to_client_path(root, output_path),
            duration_seconds=round(duration, 3),
        )
        return MergeResult(
            output_name=output_path.name,
            output_path=output_path,
            diagnostics=diagnostics,
            started_at=started_at,
            duration_seconds=duration,
        )

    def _check_disk_space(self, path: Path) -> None:
        required_mb = self.settings.MIN_FREE_SPACE_MB
        if required_mb <= 0:
            return
        try:
            usage = shutil.disk_usage(path)
        except OSError as exc:
            raise InfrastructureError(f"Cannot inspect free space at {path}: {exc}") from exc
        available_mb = usage.free / (1024 * 1024)
        if available_mb < required_mb:
            logger.warning(
                "Insufficient disk space at %s: %.1f MB available, %d MB required",
                path,
                available_mb,
                required_mb,
            )
            flush_logs()
            raise InsufficientStorageError(
                f"Insufficient disk space: {available_mb:.1f} MB available, {required_mb} MB required"
            )

    def _write_manifest(self, text: str) -> Path:
        work_dir = self.settings.WORK_DIR
        try:
            if work_dir is not None:
                work_dir.mkdir(parents=True, exist_ok=True)
            handle = tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                prefix="ffmpeg_list_",
                suffix=".txt",
                dir=str(work_dir) if work_dir is not None else None,
                delete=False,
            )
        except OSError as exc:
            logger.error("Cannot create concat manifest: %s", exc)
            raise InfrastructureError(f"Cannot create temporary file: {exc}") from exc

        manifest = Path(handle.name)
        try:
            with handle:
                handle.write(text)
        except OSError as exc:
            logger.error("Cannot write concat manifest %s: %s", manifest, exc)
            self._remove_manifest(manifest)
            raise InfrastructureError(f"Cannot write temporary file: {exc}") from exc
        return manifest

    def _remove_manifest(self, manifest: Path) -> None:
        try:
            manifest.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Failed to remove concat manifest, left orphaned at %s: %s", manifest, exc)

    def _remove_partial_output(self, output_path: Path) -> None:
        try:
            output_path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            logger.warning("Failed to remove partial output %s: %s", output_path, exc)
            return
        logger.info("Removed partial output %s", output_path)

    def _run_tool(self, cmd: List[str], output_path: Path) -> str:
        runner = self._runner or subprocess.run
        timeout = self.settings.ffmpeg_timeout
        logger.info("Running: %s", shlex.join(cmd))
        # A same-second earlier merge may already own this name
        preexisting = output_path.exists()
        try:
            result = runner(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            output = _decode(exc.output)
            logger.error("ffmpeg exceeded %ss timeout, output:\n%s", timeout, output)
            struct_logger.error("merge_failed", error="processing_timeout", timeout=timeout)
            flush_logs()
            if not preexisting:
                self._remove_partial_output(output_path)
            raise ToolTimeoutError(f"ffmpeg did not finish within {timeout}s", output=output) from exc
        except OSError as exc:
            logger.error("Failed to launch %s: %s", cmd[0], exc)
            struct_logger.error("merge_failed", error="launch_failed", detail=str(exc))
            flush_logs()
            raise ToolExecutionError(f"Failed to launch ffmpeg: {exc}", output=str(exc)) from exc

        output = _decode(result.stdout)
        logger.info("ffmpeg output:\n%s", output)
        if result.returncode != 0:
            logger.error("Merge failed: ffmpeg exited with status %s", result.returncode)
            struct_logger.error("merge_failed", error="ffmpeg_failed", returncode=result.returncode)
            flush_logs()
            if not preexisting:
                self._remove_partial_output(output_path)
            raise ToolExecutionError(
                f"Merge failed: ffmpeg exited with status {result.returncode}",
                output=output,
                returncode=result.returncode,
            )
        return output
