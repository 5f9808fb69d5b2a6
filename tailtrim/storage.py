import contextlib
import fnmatch
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Callable, Iterator, Union

logger = logging.getLogger("tailtrim.storage")

TEMP_PREFIX = ".tc-"
TEMP_SUFFIX = ".wav"

# The working directory belongs to the whole process.
_CWD_LOCK = threading.RLock()

# lister(pattern) -> names in the current directory, in platform order
DirectoryLister = Callable[[str], Iterator[str]]


def list_directory(pattern: str = "*.wav") -> Iterator[str]:
    """Lazily yield entries of the current directory matching ``pattern``.

    Every call starts a fresh listing, in the order the platform returns.
    """

    with os.scandir(os.curdir) as entries:
        for entry in entries:
            if fnmatch.fnmatch(entry.name, pattern):
                yield entry.name


def is_temp_name(name: str) -> bool:
    return name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX)


def temp_path_for(path: Union[str, Path]) -> Path:
    """Return a unique scratch path next to ``path``."""

    path = Path(path)
    unique_id = uuid.uuid4().hex[:12]
    return path.parent / f"{TEMP_PREFIX}{unique_id}{TEMP_SUFFIX}"


def replace_file(source: Union[str, Path], target: Union[str, Path]) -> None:
    """Atomically move ``source`` over ``target`` (same directory)."""

    os.replace(str(source), str(target))


def remove_file(path: Union[str, Path]) -> bool:
    """Delete ``path`` if it is still there; returns whether it existed."""

    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True


@contextlib.contextmanager
def working_directory(path: Union[str, Path]) -> Iterator[Path]:
    """Enter ``path`` for the duration of the block and always come back.

    Only one thread at a time may hold a working directory; other callers
    wait until the current block has restored the previous one.
    """

    with _CWD_LOCK:
        previous = os.getcwd()
        target = Path(path).expanduser().resolve()
        os.chdir(target)
        logger.debug("[STORAGE] Entered %s", target)
        try:
            yield target
        finally:
            os.chdir(previous)
            logger.debug("[STORAGE] Restored %s", previous)
