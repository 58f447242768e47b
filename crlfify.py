#!/usr/bin/env python3
"""
crlfify-stdio

Run a command and relay its stdout and stderr with every bare LF turned into CRLF.
"""

import argparse
import enum
import logging
import os
import queue
import subprocess
import sys
import threading
from typing import IO, Callable, List, Optional, Tuple

# Define version
__version__ = "1.0.0"

TOOL_NAME = "crlfify-stdio"
USAGE = f"Usage: {TOOL_NAME} <cmd> [args]"

CR = 0x0D
LF = 0x0A
CHUNK_SIZE = 1024
FLUSH_MODES = ("byte", "chunk")


# Diagnostics go to our own stdout, tagged so they stand apart from relayed output
logging.basicConfig(
    level=logging.INFO,
    format=f"[{TOOL_NAME}] %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(TOOL_NAME)
# Both forwarder threads log through this lock
log_lock = threading.Lock()


class CrlfifyError(Exception):
    """Base class for errors raised by crlfify-stdio."""


class UsageError(CrlfifyError):
    """No command was given on the command line."""


class SpawnError(CrlfifyError):
    """The child process could not be started."""


class StreamReadError(CrlfifyError):
    """Reading from a child stream failed."""


class StreamWriteError(CrlfifyError):
    """Writing to a relay sink failed."""


class Completion(enum.Enum):
    """Terminal status reported exactly once by each forwarder."""

    SUCCESS = 0
    FAILURE = 1

    @property
    def exit_code(self) -> int:
        return self.value


class CrlfTransformer:
    """
    Rewrite LF as CRLF unless the byte before it was already CR.

    The previous byte survives across calls, so a CR at the end of one chunk
    and an LF at the start of the next are still seen as a pair.
    """

    def __init__(self) -> None:
        self.prev: Optional[int] = None

    def feed(self, byte: int) -> bytes:
        out = bytes((CR, LF)) if byte == LF and self.prev != CR else bytes((byte,))
        self.prev = byte
        return out

    def transform(self, data: bytes) -> bytes:
        return b"".join(self.feed(byte) for byte in data)


def crlfify(data: bytes) -> bytes:
    """Normalize a complete byte string in one go."""
    return CrlfTransformer().transform(data)


def spawn_command(
    command: str, args: List[str], log: Optional[logging.Logger] = None
) -> Tuple[subprocess.Popen, IO[bytes], IO[bytes]]:
    """
    Start the command with our stdin inherited and its stdout/stderr piped.

    Returns the child handle and its two output streams. Raises SpawnError
    when the OS refuses to create the process.
    """
    log = log or logger
    try:
        child = subprocess.Popen(
            [command, *args],
            stdin=None,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            bufsize=0,
        )
    except (OSError, ValueError) as e:
        raise SpawnError(f"Failed to spawn command: {e}") from e

    with log_lock:
        log.debug("Spawned %s (pid %d)", command, child.pid)
    if child.stdout is None or child.stderr is None:
        child.kill()
        raise SpawnError(f"Failed to spawn command: no output pipes for {command}")
    return child, child.stdout, child.stderr


def _discard_sink(sink: IO[bytes]) -> None:
    """Point a closed-by-reader sink at the null device.

    Bytes left in its buffer would otherwise fail again when the interpreter
    flushes the standard streams on exit.
    """
    try:
        devnull = os.open(os.devnull, os.O_WRONLY)
        try:
            os.dup2(devnull, sink.fileno())
        finally:
            os.close(devnull)
    except (OSError, ValueError):
        pass


def _read_chunk(source: IO[bytes]) -> Optional[bytes]:
    """Read one chunk, or None when the source has closed cleanly."""
    while True:
        try:
            data = source.read(CHUNK_SIZE)
        except InterruptedError:
            continue
        except (EOFError, BrokenPipeError):
            return None
        except (OSError, ValueError) as e:
            raise StreamReadError(f"Read error: {e}") from e
        return data or None


def forward_stream(  # pylint: disable=too-many-arguments
    source: IO[bytes],
    get_sink: Callable[[], IO[bytes]],
    completions: "queue.Queue[Completion]",
    flush: str = "byte",
    log: Optional[logging.Logger] = None,
) -> Completion:
    """
    Copy source to sink with CRLF normalization until the source runs dry.

    Puts exactly one Completion on ``completions`` and also returns it.
    """
    log = log or logger
    if flush not in FLUSH_MODES:
        completions.put(Completion.FAILURE)
        raise ValueError(f"Unknown flush mode: {flush!r}")

    sink: Optional[IO[bytes]] = None
    transformer = CrlfTransformer()
    status = Completion.SUCCESS
    try:
        sink = get_sink()
        while True:
            try:
                data = _read_chunk(source)
            except StreamReadError as e:
                with log_lock:
                    log.error("%s", e)
                status = Completion.FAILURE
                break
            if data is None:
                break

            try:
                for byte in data:
                    sink.write(transformer.feed(byte))
                    if flush == "byte":
                        sink.flush()
                if flush == "chunk":
                    sink.flush()
            except BrokenPipeError:
                with log_lock:
                    log.debug("Downstream reader closed, stopping")
                _discard_sink(sink)
                break
            except (OSError, ValueError) as e:
                with log_lock:
                    log.error("%s", StreamWriteError(f"Write error: {e}"))
                status = Completion.FAILURE
                break
    except Exception as e:  # pylint: disable=broad-exception-caught
        with log_lock:
            log.error("Unexpected forwarder error: %s", str(e))
        status = Completion.FAILURE
    finally:
        if sink is not None:
            try:
                sink.flush()
            except Exception:  # pylint: disable=broad-exception-caught
                pass
        completions.put(status)
    return status


def run_forwarders(  # pylint: disable=too-many-arguments
    child_stdout: IO[bytes],
    child_stderr: IO[bytes],
    wait_all: bool = False,
    flush: str = "byte",
    get_stdout: Callable[[], IO[bytes]] = lambda: sys.stdout.buffer,
    get_stderr: Callable[[], IO[bytes]] = lambda: sys.stderr.buffer,
    log: Optional[logging.Logger] = None,
) -> Completion:
    """
    Forward both child streams on their own threads and settle the exit status.

    By default the first forwarder to finish decides; the other one is left
    running and is abandoned when the process exits. With ``wait_all`` both
    are awaited and any failure wins.
    """
    log = log or logger
    if flush not in FLUSH_MODES:
        raise ValueError(f"Unknown flush mode: {flush!r}")
    completions: "queue.Queue[Completion]" = queue.Queue()

    for name, source, get_sink in (
        ("stdout", child_stdout, get_stdout),
        ("stderr", child_stderr, get_stderr),
    ):
        threading.Thread(
            target=forward_stream,
            args=(source, get_sink, completions, flush, log),
            name=f"{TOOL_NAME}-{name}",
            daemon=True,
        ).start()

    first = completions.get()
    with log_lock:
        log.debug("First forwarder finished: %s", first.name)
    if not wait_all:
        return first

    second = completions.get()
    with log_lock:
        log.debug("Second forwarder finished: %s", second.name)
    if Completion.FAILURE in (first, second):
        return Completion.FAILURE
    return Completion.SUCCESS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=TOOL_NAME,
        usage=f"{TOOL_NAME} [options] <cmd> [args]",
        description="Run a command and relay its output with LF line endings "
        "rewritten as CRLF",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default=None,
        help="Command to run",
    )
    parser.add_argument(
        "args",
        nargs=argparse.REMAINDER,
        help="Arguments passed verbatim to the command",
    )
    parser.add_argument(
        "--wait-all",
        action="store_true",
        help="Wait for both stdout and stderr to finish before exiting "
        "(default: exit when the first one finishes)",
    )
    parser.add_argument(
        "--flush",
        choices=FLUSH_MODES,
        default="byte",
        help="Flush relayed output after every byte or after every read chunk "
        "(default: byte)",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Enable verbose logging"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"{TOOL_NAME} v{__version__}",
        help="Show program version and exit",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    try:
        args = build_parser().parse_args(argv)

        if args.verbose:
            logger.setLevel(logging.DEBUG)

        if args.command is None:
            raise UsageError(USAGE)

        try:
            _child, child_stdout, child_stderr = spawn_command(
                args.command, args.args
            )
        except SpawnError as e:
            with log_lock:
                logger.error("%s", e)
            return 1

        status = run_forwarders(
            child_stdout, child_stderr, wait_all=args.wait_all, flush=args.flush
        )
        return status.exit_code
    except UsageError as e:
        print(e, file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130
    except Exception as e:  # pylint: disable=broad-exception-caught
        logger.error("An unexpected error occurred: %s", str(e))
        if logger.isEnabledFor(logging.DEBUG):
            import traceback  # pylint: disable=import-outside-toplevel

            logger.debug("Traceback: %s", traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())
