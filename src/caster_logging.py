#!/usr/bin/env python3

"""
caster_logging.py - Log file and print() capture for NesCaster.

Modules report through tagged print() lines such as "[SaveStack] Saved ...".
After init_redirectors() every such line is echoed to the console and
written to caster.log through a logger named after its tag
("caster.savestack"), so the log can be filtered per subsystem.
Lines printed to stderr are logged at ERROR.
"""

import logging
import os
import re
import sys
from datetime import datetime

from config import DATA_DIR, LOG_FILE_NAME

logging.getLogger("PIL").setLevel(logging.WARNING)

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"

_TAG_RE = re.compile(r"^\[([A-Za-z][\w .-]*)\]\s*")

_file_handler = None


def open_log_file(log_dir=None):
    """Attach a fresh caster.log to the root logger and return its path.

    The previous session's log is overwritten. When the data directory is
    not writable the log is placed next to this module instead.
    """
    global _file_handler

    log_dir = log_dir or DATA_DIR
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError:
        log_dir = os.path.dirname(os.path.abspath(__file__))
    log_path = os.path.join(log_dir, LOG_FILE_NAME)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    if _file_handler is not None:
        root.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    try:
        handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    except OSError as e:
        print(f"[Logging] Could not open {log_path}: {e}")
        return ""
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)
    _file_handler = handler
    return log_path


def logger_for_line(line, base="caster"):
    """Pick the logger for a printed line from its leading [Tag]."""
    match = _TAG_RE.match(line)
    if not match:
        return logging.getLogger(base), line
    tag = match.group(1).replace(" ", "").lower()
    return logging.getLogger(f"{base}.{tag}"), line[match.end():]


WARNING_WORDS = ("error", "failed", "warning", "disabled", "rolled back")


def level_for_line(line, default=logging.INFO):
    if default >= logging.WARNING:
        return default
    lowered = line.lower()
    if any(word in lowered for word in WARNING_WORDS):
        return logging.WARNING
    return default


class LoggingPrintRedirector:
    """File-like object installed as sys.stdout / sys.stderr.

    Complete lines are echoed to the wrapped stream and logged; partial
    writes are held until a newline or flush().
    """

    # Per-tick chatter kept out of both console and log
    SUPPRESS_PATTERNS = (
        " trigger debounced (",
        "[LibretroCore] Audio batch error",
        "[Settings] File not found:",
        "Hello from the pygame community.",
    )

    def __init__(self, stream, level=logging.INFO):
        self.stream = stream
        self.level = level
        self.pending = ""

    @property
    def encoding(self):
        return getattr(self.stream, "encoding", "utf-8")

    def isatty(self):
        return bool(self.stream and self.stream.isatty())

    def suppressed(self, line):
        return any(pattern in line for pattern in self.SUPPRESS_PATTERNS)

    def emit(self, line):
        line = line.rstrip()
        if not line.strip() or self.suppressed(line):
            return
        if self.stream:
            self.stream.write(line + "\n")
        logger, message = logger_for_line(line)
        logger.log(level_for_line(line, self.level), message)

    def write(self, text):
        self.pending += text
        while "\n" in self.pending:
            line, self.pending = self.pending.split("\n", 1)
            self.emit(line)
        return len(text)

    def flush(self):
        if self.pending:
            line, self.pending = self.pending, ""
            self.emit(line)
        if self.stream:
            self.stream.flush()


def init_redirectors(version="0.1.0", log_dir=None):
    """
    Open the log file and capture stdout / stderr.

    Call before anything else prints. Calling again while the redirectors
    are installed only returns the current log path.
    """
    if isinstance(sys.stdout, LoggingPrintRedirector):
        return getattr(sys.stdout, "log_path", "")

    log_path = open_log_file(log_dir)

    sys.stdout = LoggingPrintRedirector(sys.stdout, logging.INFO)
    sys.stdout.log_path = log_path
    sys.stderr = LoggingPrintRedirector(sys.stderr, logging.ERROR)

    logger = logging.getLogger("caster")
    logger.info(f"NesCaster {version} started {datetime.now():%Y-%m-%d %H:%M:%S}")
    logger.info(f"Python {sys.version.split()[0]} on {sys.platform}, log at {log_path}")
    return log_path


def restore_streams():
    """Flush and uninstall the redirectors and close the log file."""
    global _file_handler

    for name in ("stdout", "stderr"):
        current = getattr(sys, name)
        if isinstance(current, LoggingPrintRedirector):
            current.flush()
            setattr(sys, name, current.stream)
    if _file_handler is not None:
        logging.getLogger().removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None
