"""
Error descriptions with call-site attribution.

``build_error_info`` turns any exception into an ``ErrorInfo``: its type
name, its message, and the stack frame that best explains where it came
from.  The frame is found by walking the traceback from the raise point
outwards and taking the first frame whose module belongs to the
application (as defined by a list of module prefixes); when no frame
matches, the raise point itself is used.
"""

import traceback
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class ErrorSite:
    """Source location of one stack frame."""

    file: str
    line: int
    function: str
    owning_unit: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "function": self.function,
            "module": self.owning_unit,
        }


@dataclass(frozen=True)
class ErrorInfo:
    """What failed, why, and where."""

    kind: str
    message: str
    site: Optional[ErrorSite] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.kind, "message": self.message}
        if self.site is not None:
            data["location"] = self.site.to_dict()
        return data


def is_app_module(module: str, prefixes: Iterable[str]) -> bool:
    """Return ``True`` when *module* is one of *prefixes* or nested below one."""
    for prefix in prefixes:
        if module == prefix or module.startswith(prefix + "."):
            return True
    return False


def build_error_info(exc: BaseException, app_prefixes: Sequence[str] = ()) -> ErrorInfo:
    """Describe *exc* as an ``ErrorInfo``.

    Args:
        exc: The exception to describe.  It need not have been raised; an
            exception without a traceback simply gets no ``site``.
        app_prefixes: Module name prefixes that identify application code.

    Returns:
        The ``ErrorInfo``.
    """
    return ErrorInfo(
        kind=type(exc).__name__,
        message=str(exc),
        site=find_error_site(exc, app_prefixes),
    )


def find_error_site(exc: BaseException, app_prefixes: Sequence[str] = ()) -> Optional[ErrorSite]:
    """Return the first application frame of *exc*'s traceback, innermost first."""
    frames = _frames_innermost_first(exc)
    if not frames:
        return None

    for site in frames:
        if is_app_module(site.owning_unit, app_prefixes):
            return site
    return frames[0]


def _frames_innermost_first(exc: BaseException) -> List[ErrorSite]:
    tb = exc.__traceback__
    if tb is None:
        return []
    sites = [
        ErrorSite(
            file=frame.f_code.co_filename,
            line=lineno,
            function=frame.f_code.co_name,
            owning_unit=str(frame.f_globals.get("__name__", "")),
        )
        for frame, lineno in traceback.walk_tb(tb)
    ]
    sites.reverse()
    return sites
