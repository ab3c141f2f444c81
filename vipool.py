#!/usr/bin/env python3
"""
vipool - Edit many source files as one

Copies any number of text source files into a single merged document and
opens it in your editor. Every time the editor saves, the merged document is
split back into the individual files, and only files whose content actually
changed are rewritten.

At the same time, if any tracked file is changed by another process (an IDE,
a formatter, a git checkout), the merged document is regenerated so the editor
view stays current.

Usage:
    vipool app.h app/*.h app/*.c libgfx/*.h libgfx/*.c

Please only use on source code that is backed up and under source control.
"""

import argparse
import asyncio
import contextlib
import functools
import logging
import os
import shlex
import shutil
import signal
import subprocess
import sys
import tempfile
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rich.console import Console


__version__ = "1.0.0"
__author__ = "vipool Project"
__license__ = "MIT"


# Marker template:
# // [<path>] <Start|End> Fileno: [<index>:<total>] ****...**** VIP
SENTINEL = "********* VIP"
MARKER_TAIL = "*" * 58 + " VIP"
START = "Start"
END = "End"
NO_EOL = "NoEOL"

# tab, newline, carriage return and printable ASCII
TEXT_BYTES = bytes([9, 10, 13]) + bytes(range(32, 127))

UNKNOWN_TIME = (0, 0)
MAX_STABLE_READS = 20
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_BUFFER_SIZE = 64 * 1024

# Parser states for the split scanner
SEARCHING = "searching"
IN_BODY = "in_body"

logger = logging.getLogger("vipool")


# Async helper for running blocking I/O in thread pool
async def run_in_thread(func: Callable[..., Any], *args, **kwargs) -> Any:
    """Run a blocking function in a thread pool.

    Uses asyncio.to_thread() for Python 3.9+,
    falls back to run_in_executor() for Python 3.8.
    """
    if sys.version_info >= (3, 9):
        return await asyncio.to_thread(func, *args, **kwargs)
    else:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(
            None, functools.partial(func, *args, **kwargs)
        )


class VipoolError(Exception):
    """Base exception for vipool errors"""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class InputError(VipoolError):
    """A tracked file (or the editor) is missing or unreadable"""

    pass


class FormatError(VipoolError):
    """Binary content, or a merged document whose markers are broken"""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        expected: Any = None,
        actual: Any = None,
    ):
        super().__init__(message, path)
        self.expected = expected
        self.actual = actual


class ConsistencyError(VipoolError):
    """A file kept changing while we tried to read it"""

    pass


class WriteError(VipoolError):
    """A merged document or source file could not be written"""

    pass


@dataclass
class FileRecord:
    """A tracked source file and the modification time we last saw"""

    path: str
    mtime_sec: int = 0
    mtime_nsec: int = 0

    @property
    def mod_time(self) -> Tuple[int, int]:
        return (self.mtime_sec, self.mtime_nsec)

    def refresh(self) -> None:
        self.mtime_sec, self.mtime_nsec = get_mod_time(self.path)


@dataclass
class Marker:
    """One boundary line of the merged document"""

    path: str
    role: str
    index: int
    total: int
    no_eol: bool = False


def get_mod_time(path: Union[str, Path]) -> Tuple[int, int]:
    """Return (seconds, nanoseconds) of the last modification, (0, 0) if unknown"""
    try:
        mtime_ns = os.stat(path).st_mtime_ns
    except OSError as e:
        logger.warning(f"Cannot read modification time of [{path}]: {e}")
        return UNKNOWN_TIME
    seconds, nanos = divmod(mtime_ns, 1_000_000_000)
    return (seconds, nanos)


def _read_bytes(path: Union[str, Path]) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def read_stable(path: Union[str, Path], max_attempts: int = MAX_STABLE_READS) -> bytes:
    """Read a file that another process may be rewriting.

    The whole file is read twice in a row; when both reads agree the content
    is accepted. An editor may truncate and then write, so a single read can
    observe a torn file.

    Raises:
        InputError: If the file cannot be read
        ConsistencyError: If no two consecutive reads agreed within max_attempts
    """
    for attempt in range(1, max_attempts + 1):
        try:
            first = _read_bytes(path)
            second = _read_bytes(path)
        except OSError as e:
            raise InputError(f"Cannot read file: {e}", path=str(path)) from e
        if first == second:
            if attempt > 1:
                logger.debug(f"Stable read of [{path}] after {attempt} attempts")
            return first
    raise ConsistencyError(
        f"Could not obtain a consistent read after {max_attempts} attempts",
        path=str(path),
    )


def _current_umask() -> int:
    # os.umask() can only be read by setting it
    umask = os.umask(0o022)
    os.umask(umask)
    return umask


def is_binary_chunk(chunk: bytes) -> bool:
    """True if the chunk holds any byte that is not text"""
    return bool(chunk.translate(None, TEXT_BYTES))


def check_marker_path(path: str) -> None:
    """Reject paths that cannot be written into a marker line"""
    if "]" in path or "\n" in path or "\r" in path:
        raise InputError(
            "Path cannot be represented in a marker (contains ']' or a line break)",
            path=path,
        )


def format_marker(marker: Marker) -> bytes:
    role = f"{marker.role} {NO_EOL}" if marker.no_eol else marker.role
    line = (
        f"// [{marker.path}] {role} Fileno: "
        f"[{marker.index}:{marker.total}] {MARKER_TAIL}\n"
    )
    return os.fsencode(line)


def parse_marker(line: bytes) -> Optional[Marker]:
    """Parse one line of a merged document.

    Returns None for ordinary content. A line that looks like a marker (starts
    with '//' and carries 'Fileno:' and the sentinel) but cannot be parsed
    raises FormatError.
    """
    if not line.startswith(b"//"):
        return None
    if b"Fileno:" not in line or os.fsencode(SENTINEL) not in line:
        return None

    text = os.fsdecode(line.rstrip(b"\r\n"))

    path_start = text.find("[")
    if path_start < 0:
        raise FormatError(f"Marker is missing '[' before its path: {text}")
    path_end = text.find("]", path_start + 1)
    if path_end < 0:
        raise FormatError(f"Marker is missing ']' after its path: {text}")
    path = text[path_start + 1 : path_end]

    fields = text[path_end + 1 :].split()
    if not fields or fields[0] not in (START, END):
        raise FormatError(f"Marker role must be {START} or {END}: {text}", path=path)
    role = fields[0]
    no_eol = len(fields) > 1 and fields[1] == NO_EOL

    fileno = text.find("Fileno:", path_end)
    if fileno < 0:
        raise FormatError(f"Marker is missing 'Fileno:': {text}", path=path)
    number_start = text.find("[", fileno)
    if number_start < 0:
        raise FormatError(f"Marker is missing '[' before its file number: {text}", path=path)
    number_end = text.find("]", number_start + 1)
    if number_end < 0:
        raise FormatError(f"Marker is missing ']' after its file number: {text}", path=path)

    index_str, colon, total_str = text[number_start + 1 : number_end].partition(":")
    if not colon:
        raise FormatError(f"Marker file number is missing ':': {text}", path=path)
    try:
        index = int(index_str)
        total = int(total_str)
    except ValueError:
        raise FormatError(f"Marker file number is not numeric: {text}", path=path)

    return Marker(path=path, role=role, index=index, total=total, no_eol=no_eol)


def needs_split(
    last_merged_time: Sequence[int], current_merged_time: Sequence[int]
) -> bool:
    """The merged document was saved since we last looked at it"""
    return tuple(current_merged_time) != tuple(last_merged_time)


def count_changed(
    last_file_times: Sequence[Sequence[int]],
    current_file_times: Sequence[Sequence[int]],
) -> int:
    """Number of tracked files modified since they were last synced"""
    if len(last_file_times) != len(current_file_times):
        raise ValueError(
            f"Expected {len(last_file_times)} timestamps, got {len(current_file_times)}"
        )
    return sum(
        1
        for last, current in zip(last_file_times, current_file_times)
        if tuple(last) != tuple(current)
    )


def needs_merge(
    last_file_times: Sequence[Sequence[int]],
    current_file_times: Sequence[Sequence[int]],
) -> bool:
    """Some tracked file was modified by another process"""
    return count_changed(last_file_times, current_file_times) > 0


class MergePool:
    """One editing session over a fixed, ordered set of text files"""

    def __init__(self, config: Optional[Dict] = None):
        self.config = config or {}

        # Initialize temporary files list first (needed for cleanup in case of early errors)
        self._temp_files = []

        self.console = Console(stderr=True)
        self.verbose = bool(self.config.get("verbose", False))
        self.logger = self._setup_logging()

        self.editor = (
            self.config.get("editor")
            or os.environ.get("VISUAL")
            or os.environ.get("EDITOR")
            or "vi"
        )

        self.poll_interval = self._number_setting(
            "poll_interval", float, DEFAULT_POLL_INTERVAL
        )
        self.max_stable_reads = self._number_setting(
            "max_stable_reads", int, MAX_STABLE_READS
        )
        self.buffer_size = self._number_setting("buffer_size", int, DEFAULT_BUFFER_SIZE)

        self.temp_dir = self.config.get("temp_dir") or None

        # Session state, shared by the editing flow and the watcher
        self.records: List[FileRecord] = []
        self.merged_path: Optional[Path] = None
        self.snapshot_path: Optional[Path] = None
        self.flag_dir: Optional[Path] = None
        self.merged_time: Tuple[int, int] = UNKNOWN_TIME
        self._editing = False

        self._setup_signal_handlers()

        self.stats = {
            "merges": 0,
            "splits": 0,
            "files_written": 0,
        }

    def _number_setting(self, key: str, kind: type, default: Union[int, float]):
        """Read a positive numeric setting, falling back to default when not positive"""
        raw = self.config.get(key, default)
        try:
            value = kind(raw)
        except (TypeError, ValueError):
            raise InputError(f"Invalid value for config setting '{key}': {raw!r}")
        if value <= 0:
            return default
        return value

    def _setup_logging(self) -> logging.Logger:
        """Setup structured logging"""
        level = logging.DEBUG if self.verbose else logging.INFO

        logger.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )

        # Avoid duplicate handlers
        if not self._console_handlers(logger):
            handler = logging.StreamHandler()
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        log_file = self.config.get("log_file")
        if log_file and not any(
            isinstance(h, logging.FileHandler) for h in logger.handlers
        ):
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        return logger

    @staticmethod
    def _console_handlers(log: logging.Logger) -> List[logging.Handler]:
        return [
            h
            for h in log.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]

    @contextlib.contextmanager
    def _quiet_console(self):
        """Keep routine log lines off the terminal while the editor owns it"""
        handlers = self._console_handlers(self.logger)
        levels = [h.level for h in handlers]
        for handler in handlers:
            handler.setLevel(logging.ERROR)
        try:
            yield
        finally:
            for handler, level in zip(handlers, levels):
                handler.setLevel(level)

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful cleanup on interruption"""
        def signal_handler(signum, frame):
            """Handle interrupt signals gracefully"""
            if signum == signal.SIGINT and self._editing:
                # Ctrl-C belongs to the editor in the foreground
                self.logger.debug("Ignoring interrupt while the editor is running")
                return
            self.logger.warning("Received interrupt signal, cleaning up...")
            self._cleanup_temp_files()
            if self.merged_path is not None and self.merged_path.exists():
                self.logger.warning(f"Merged document left at [{self.merged_path}]")
            sys.exit(130)  # 128 + SIGINT (2)

        # Only setup handlers for signals available on current platform
        try:
            signal.signal(signal.SIGINT, signal_handler)
            signal.signal(signal.SIGTERM, signal_handler)
        except (ValueError, OSError):
            # Signal handling may not be available in all contexts (e.g., threads)
            pass

    def _make_temp_path(self, prefix: str, suffix: str) -> Path:
        fd, name = tempfile.mkstemp(prefix=prefix, suffix=suffix, dir=self.temp_dir)
        os.close(fd)
        return Path(name)

    def _build_records(self, file_paths: Iterable[Union[str, Path]]) -> List[FileRecord]:
        """Validate the command line file list and turn it into records"""
        records = []
        seen = {}
        for file_path in file_paths:
            path = str(file_path)
            check_marker_path(path)
            real = os.path.realpath(path)
            if real in seen:
                raise InputError(
                    f"File is listed twice (also as [{seen[real]}])", path=path
                )
            seen[real] = path
            records.append(FileRecord(path))

        if not records:
            raise InputError("No files to edit")
        return records

    def merge(
        self, merged_path: Union[str, Path], records: List[FileRecord]
    ) -> List[FileRecord]:
        """Write every tracked file into a fresh merged document.

        The document is assembled in a temporary sibling and moved over
        merged_path only when every file was copied, so a rejected merge
        leaves no output behind. Each record's timestamp is refreshed after
        its file has been copied.

        Raises:
            InputError: If a file cannot be opened or read
            FormatError: If a file holds binary data
            WriteError: If the merged document cannot be written
        """
        merged_path = Path(merged_path)
        total = len(records)
        temp_name = None

        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                prefix=f".{merged_path.name}.",
                suffix=".tmp",
                dir=merged_path.parent,
                delete=False,
            ) as out:
                temp_name = out.name
                self._temp_files.append(temp_name)
                for index, record in enumerate(records, 1):
                    self._write_record(out, record, index, total)
                    record.refresh()

            # Atomic move to final location
            os.replace(temp_name, merged_path)
        except OSError as e:
            raise WriteError(
                f"Cannot write merged document: {e}", path=str(merged_path)
            ) from e
        finally:
            if temp_name is not None:
                if os.path.exists(temp_name):
                    os.unlink(temp_name)
                self._temp_files.remove(temp_name)

        self.stats["merges"] += 1
        self.logger.debug(f"Merged {total} files into {merged_path}")
        return records

    def _write_record(self, out, record: FileRecord, index: int, total: int) -> None:
        """Copy one file between its Start and End markers"""
        path = record.path
        check_marker_path(path)
        try:
            inf = open(path, "rb")
        except OSError as e:
            raise InputError(f"Cannot open input file: {e.strerror}", path=path) from e

        with inf:
            out.write(format_marker(Marker(path, START, index, total)))
            last_byte = b"\n"  # an empty file needs no extra newline
            while True:
                try:
                    chunk = inf.read(self.buffer_size)
                except OSError as e:
                    raise InputError(f"Cannot read input file: {e.strerror}", path=path) from e
                if not chunk:
                    break
                if is_binary_chunk(chunk):
                    raise FormatError("File is binary, only text files can be merged", path=path)
                out.write(chunk)
                last_byte = chunk[-1:]

        # Keep the End marker on a line of its own
        no_eol = last_byte != b"\n"
        if no_eol:
            out.write(b"\n")
        out.write(format_marker(Marker(path, END, index, total, no_eol=no_eol)))

    def split(
        self, merged_path: Union[str, Path], records: List[FileRecord]
    ) -> List[str]:
        """Write the merged document's records back to their files.

        The merged document is snapshotted with read_stable() and the snapshot
        is parsed from a private copy, so the editor may keep saving while we
        work. Files whose content did not change are left alone, timestamp
        included.

        Returns:
            Paths of the files that were rewritten
        """
        merged_path = Path(merged_path)
        data = read_stable(merged_path, self.max_stable_reads)

        snapshot_path = self.snapshot_path or self._make_temp_path("vipool.snapshot.", ".tmp")
        try:
            try:
                with open(snapshot_path, "wb") as f:
                    f.write(data)
            except OSError as e:
                raise WriteError(
                    f"Cannot write snapshot of merged document: {e}",
                    path=str(snapshot_path),
                ) from e

            with open(snapshot_path, "rb") as f:
                written = self._split_records(f, records)
        finally:
            if snapshot_path.exists():
                snapshot_path.unlink()

        self.stats["splits"] += 1
        if written:
            self.logger.info(f"Split {merged_path}: updated {len(written)} of {len(records)} files")
        else:
            self.logger.debug(f"Split {merged_path}: no file changed")
        return written

    def _split_records(self, lines: Iterable[bytes], records: List[FileRecord]) -> List[str]:
        """Scan merged document lines and commit each record as it ends"""
        total = len(records)
        state = SEARCHING
        expected = 1
        current: Optional[Marker] = None
        body: List[bytes] = []
        written = []

        for line_no, line in enumerate(lines, 1):
            marker = parse_marker(line)

            if state == SEARCHING:
                if marker is None:
                    continue
                if marker.role != START:
                    raise FormatError(
                        f"Line {line_no}: {END} marker without a {START} marker",
                        path=marker.path,
                    )
                self._check_marker(marker, expected, records, line_no)
                current = marker
                body = []
                state = IN_BODY
                continue

            if marker is None:
                body.append(line)
                continue
            if marker.role == START:
                raise FormatError(
                    f"Line {line_no}: {START} marker inside file {current.index} "
                    f"[{current.path}], its {END} marker is missing",
                    path=marker.path,
                )
            self._check_marker(marker, expected, records, line_no)

            content = b"".join(body)
            if marker.no_eol and content.endswith(b"\n"):
                content = content[:-1]
            if self._commit_if_changed(records[expected - 1], content):
                written.append(records[expected - 1].path)

            expected += 1
            current = None
            state = SEARCHING

        if state == IN_BODY:
            raise FormatError(
                f"File {current.index} [{current.path}] has no {END} marker",
                path=current.path,
            )
        found = expected - 1
        if found != total:
            raise FormatError(
                f"Merged document holds {found} files, it should hold {total}",
                expected=total,
                actual=found,
            )
        return written

    def _check_marker(
        self, marker: Marker, expected: int, records: List[FileRecord], line_no: int
    ) -> None:
        total = len(records)
        if marker.index != expected:
            raise FormatError(
                f"Line {line_no}: file number is {marker.index}, it should be {expected}",
                path=marker.path,
                expected=expected,
                actual=marker.index,
            )
        if marker.total != total:
            raise FormatError(
                f"Line {line_no}: total files is {marker.total}, it should be {total}",
                path=marker.path,
                expected=total,
                actual=marker.total,
            )
        tracked = records[expected - 1].path
        if marker.path != tracked:
            raise FormatError(
                f"Line {line_no}: file {expected} is [{marker.path}], it should be [{tracked}]",
                path=marker.path,
                expected=tracked,
                actual=marker.path,
            )

    def _commit_if_changed(self, record: FileRecord, content: bytes) -> bool:
        """Replace the file with content unless it already holds exactly that"""
        # Write through symlinks instead of replacing them
        target = Path(os.path.realpath(record.path))
        try:
            current = target.read_bytes()
        except FileNotFoundError:
            current = None
        except OSError as e:
            raise InputError(f"Cannot read file: {e.strerror}", path=record.path) from e

        if current == content:
            return False

        temp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="wb",
                prefix=f".{target.name}.",
                suffix=".vipool",
                dir=target.parent,
                delete=False,
            ) as f:
                temp_name = f.name
                f.write(content)
            if current is not None:
                shutil.copymode(target, temp_name)
            else:
                # A recreated file gets the mode a plain open() would give it
                os.chmod(temp_name, 0o666 & ~_current_umask())
            os.replace(temp_name, target)
        except OSError as e:
            if temp_name is not None and os.path.exists(temp_name):
                os.unlink(temp_name)
            raise WriteError(f"Cannot write file: {e}", path=record.path) from e

        record.refresh()
        self.stats["files_written"] += 1
        self.logger.info(f"Updated: {record.path}")
        return True

    def _remerge(self) -> None:
        self.merge(self.merged_path, self.records)
        self.merged_time = get_mod_time(self.merged_path)

    def poll_once(self) -> Tuple[bool, int]:
        """One watcher pass.

        Splits if the editor saved the merged document, then re-merges if any
        tracked file was changed by another process.

        Returns:
            (whether a split ran, number of externally changed files)
        """
        did_split = False
        current_merged_time = get_mod_time(self.merged_path)
        if needs_split(self.merged_time, current_merged_time):
            self.split(self.merged_path, self.records)
            # A save that lands during the split shows up as a newer time next pass
            self.merged_time = current_merged_time
            did_split = True

        last_times = [record.mod_time for record in self.records]
        current_times = [get_mod_time(record.path) for record in self.records]
        changed = count_changed(last_times, current_times)
        if changed:
            self.logger.info(f"{changed} file(s) changed on disk, regenerating {self.merged_path}")
            self._remerge()

        return did_split, changed

    async def watch(self) -> None:
        """Poll the merged document and tracked files until the session ends"""
        try:
            while self.flag_dir is not None and self.flag_dir.exists():
                await asyncio.sleep(self.poll_interval)
                await run_in_thread(self.poll_once)
        except VipoolError as e:
            self.logger.error(f"Watcher stopped: {e}")
            raise

    def _run_editor(self) -> int:
        command = shlex.split(self.editor) + [str(self.merged_path)]
        self.logger.debug(f"Launching editor: {command}")
        try:
            result = subprocess.run(command)
        except FileNotFoundError as e:
            raise InputError(f"Editor not found: {command[0]}", path=command[0]) from e
        return result.returncode

    def _create_temp_artifacts(self) -> None:
        # Keep the first file's extension so the editor picks the right syntax
        suffix = Path(self.records[0].path).suffix or ".txt"
        self.merged_path = self._make_temp_path("vipool.pool.", suffix)
        self.snapshot_path = self._make_temp_path("vipool.snapshot.", ".tmp")
        self.flag_dir = Path(tempfile.mkdtemp(prefix="vipool.lockdir.", dir=self.temp_dir))
        self._temp_files.extend([self.snapshot_path, self.flag_dir])

    def _remove_flag_dir(self) -> None:
        if self.flag_dir is not None and self.flag_dir.exists():
            self.flag_dir.rmdir()

    async def run_session(self, file_paths: Iterable[Union[str, Path]]) -> int:
        """Merge, edit, keep in sync, and split until the editor exits.

        Fatal errors propagate as VipoolError. In that case the merged
        document is kept on disk so pending edits can be recovered by hand.

        Returns:
            Number of file writes made during the session
        """
        self.records = self._build_records(file_paths)
        try:
            self._create_temp_artifacts()
            try:
                await run_in_thread(self._remerge)
            except VipoolError:
                # Nothing was edited yet, so there is nothing to recover
                self.merged_path.unlink()
                self.merged_path = None
                raise
            self.logger.info(f"Merged {len(self.records)} files into {self.merged_path}")

            watcher = asyncio.create_task(self.watch())
            try:
                self._editing = True
                with self._quiet_console():
                    returncode = await run_in_thread(self._run_editor)
            finally:
                self._editing = False
                self._remove_flag_dir()
                # The watcher finishes its current pass before we go on
                watcher_result = (await asyncio.gather(watcher, return_exceptions=True))[0]

            watcher_error = None
            if isinstance(watcher_result, VipoolError):
                watcher_error = watcher_result
            elif isinstance(watcher_result, BaseException):
                raise watcher_result
            if returncode != 0:
                self.logger.warning(f"Editor exited with status {returncode}")

            if needs_split(self.merged_time, get_mod_time(self.merged_path)):
                try:
                    await run_in_thread(self.split, self.merged_path, self.records)
                except VipoolError as e:
                    if watcher_error is not None:
                        self.logger.error(f"Final split failed too: {e}")
                        raise watcher_error
                    raise
                if watcher_error is not None:
                    # The last save parsed cleanly, so every file is in sync again
                    self.logger.warning(
                        f"Recovered from watcher error after the final split: {watcher_error}"
                    )
            elif watcher_error is not None:
                raise watcher_error

            self.merged_path.unlink()
            self.console.print(
                f"vipool: {self.stats['files_written']} file write(s) "
                f"across {len(self.records)} files",
                markup=False,
                highlight=False,
            )
            return self.stats["files_written"]
        finally:
            self._cleanup_temp_files()

    def _cleanup_temp_files(self):
        """Clean up any temporary files and directories"""
        for temp_item in self._temp_files[:]:
            try:
                temp_path = Path(temp_item)
                if temp_path.exists():
                    if temp_path.is_dir():
                        shutil.rmtree(temp_path)
                    else:
                        temp_path.unlink()
                self._temp_files.remove(temp_item)
            except (OSError, PermissionError):
                pass

    def __del__(self):
        """Destructor to ensure cleanup"""
        if hasattr(self, "_temp_files"):
            self._cleanup_temp_files()


def print_fatal(console: Console, error: BaseException, merged_path: Optional[Path]) -> None:
    """Print a loud banner telling the user what broke and where their edits are"""
    lines = [f"vipool: Fatal Error: {error}"]
    path = getattr(error, "path", None)
    if path:
        lines.append(f"vipool: filename: [{path}]")
    if merged_path is not None:
        lines.append(f"vipool: mergefile path is [{merged_path}]")

    console.print("***\n***\n***", style="bold red", markup=False, highlight=False)
    for line in lines:
        console.print(f"***    {line}", style="bold red", markup=False, highlight=False)
    console.print("***\n***\n***", style="bold red", markup=False, highlight=False)


def create_config_file(config_path: Path) -> bool:
    """Create a default configuration file"""
    default_config = """# vipool Configuration
# Uncomment and modify values as needed

# Editor command, the merged document path is appended
# (defaults to $VISUAL, then $EDITOR, then vi)
# editor = "vim -n"

# Seconds between checks for saves and external changes
# poll_interval = 1.0

# Attempts to get two identical reads of the merged document
# max_stable_reads = 20

# Buffer size for copying files into the merged document (in bytes)
# buffer_size = 65536

# Directory for the merged document and other temporary files
# temp_dir = "/tmp"

# Also write the log to this file
# log_file = "/tmp/vipool.log"

# verbose = false
"""

    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w") as f:
            f.write(default_config)
        return True
    except (OSError, PermissionError) as e:
        print(f"Error creating config file: {e}")
        return False


def _parse_config_value(value: str) -> Any:
    if value.lower() in ("true", "false"):
        return value.lower() == "true"
    if value.isdigit():
        return int(value)
    try:
        return float(value)
    except ValueError:
        return value


def load_config_file(config_path: Path) -> Dict:
    """Load configuration from file with error handling"""
    if not config_path.exists():
        return {}

    config = {}
    line_num = 0
    try:
        with open(config_path, "r") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                if "=" in line:
                    key, value = line.split("=", 1)
                    key = key.strip()
                    value = value.strip().strip("\"'")
                    config[key] = _parse_config_value(value)

    except (OSError, UnicodeDecodeError) as e:
        print(f"Warning: Error loading config file on line {line_num}: {e}")

    return config


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point with comprehensive error handling"""
    parser = argparse.ArgumentParser(
        prog="vipool",
        description="Edit many source files as a single file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Edit all headers and sources of a project at once
  %(prog)s app.h app/*.h app/*.c libgfx/*.h libgfx/*.c

  # Use a different editor
  %(prog)s -e "nvim" src/*.py

Please only use on source code that is backed up and under source control.
        """,
    )

    parser.add_argument("files", nargs="*", help="Files to edit, in order")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    parser.add_argument("-e", "--editor", default=None, help="Editor command")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=None,
        help="Seconds between checks for saves and external changes",
    )

    # Configuration
    parser.add_argument(
        "--config",
        type=Path,
        default=Path.home() / ".config" / "vipool" / "config",
        help="Configuration file path",
    )
    parser.add_argument(
        "--create-config", action="store_true", help="Create default config"
    )

    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    args = parser.parse_args(argv)

    if args.create_config:
        if create_config_file(args.config):
            print(f"Created default configuration file: {args.config}")
            return 0
        print(f"Failed to create configuration file: {args.config}")
        return 1

    if not args.files:
        parser.error("at least one file is required")

    # Load configuration
    config = load_config_file(args.config)

    # Override config with command line arguments
    if args.verbose:
        config["verbose"] = True
    if args.editor:
        config["editor"] = args.editor
    if args.poll_interval is not None:
        config["poll_interval"] = args.poll_interval

    console = Console(stderr=True)
    pool = None
    try:
        pool = MergePool(config)
        await pool.run_session(args.files)
        return 0
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        return 130
    except VipoolError as e:
        print_fatal(console, e, pool.merged_path if pool else None)
        return 1
    except Exception as e:
        print_fatal(console, e, pool.merged_path if pool else None)
        if config.get("verbose"):
            traceback.print_exc()
        return 1


def cli_main():
    """Synchronous entry point for console scripts"""
    return asyncio.run(main())


if __name__ == "__main__":
    sys.exit(cli_main())
