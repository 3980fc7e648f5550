import logging
import os
from pathlib import Path

_PACKAGE_ROOT = Path(__file__).resolve().parent.parent


def grey(text: str) -> str:
    """Wrap *text* in the grey ANSI color."""
    return f"\x1b[90m{text}\x1b[0m"


def italic(text: str) -> str:
    """Wrap *text* in the italic ANSI style."""
    return f"\x1b[3m{text}\x1b[0m"


class GraftLogFilter(logging.Filter):
    """
    Adds a ``ref`` attribute locating the statement that logged a record.

    Records from graft's own modules are referenced by their module path
    (``graft/transplant/engine.py:42``) wherever the package is installed;
    other records relative to the working directory when below it, and by
    file name otherwise.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        pathname = Path(record.pathname)
        for base in (_PACKAGE_ROOT, Path.cwd()):
            if pathname.is_relative_to(base):
                ref = pathname.relative_to(base).as_posix()
                break
        else:
            ref = f".../{os.path.basename(pathname)}"
        record.ref = f"{ref}:{record.lineno}"
        return True


__log_format__: str = (
    f"{grey(italic('%(asctime)s'))} "
    "%(levelname)-8s %(name)-28s %(message)-60s "
    f"{grey(italic('%(ref)s'))}"
)
"""
The default log format string for graft: time of day, level, logger name,
message and source reference.
"""

__date_format__: str = "%H:%M:%S"

formatter: logging.Formatter = logging.Formatter(__log_format__, __date_format__)

handler: logging.StreamHandler = logging.StreamHandler()
"""
The default log handler for graft, writing to standard error.
"""
handler.setFormatter(formatter)
handler.addFilter(GraftLogFilter())
logging.getLogger().addHandler(handler)
