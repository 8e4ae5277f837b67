"""
Tests for error descriptions and call-site attribution.

Application and framework code are simulated with functions compiled into
namespaces carrying their own ``__name__``, which is what the attribution
reads from each frame.
"""

import textwrap

import pytest

from request_telemetry.observability.errors import (
    ErrorInfo,
    ErrorSite,
    build_error_info,
    find_error_site,
    is_app_module,
)


def _module(name, source):
    namespace = {"__name__": name}
    exec(compile(textwrap.dedent(source), f"<{name}>", "exec"), namespace)
    return namespace


FRAMEWORK = _module(
    "framework.db",
    """
    def fetch():
        return execute()

    def execute():
        raise LookupError("row missing")
    """,
)

APP = _module(
    "shopapp.service",
    """
    def load_user(loader):
        return loader()
    """,
)


def _raised(func, *args):
    try:
        func(*args)
    except Exception as exc:
        return exc
    raise AssertionError("expected an exception")


class TestBuildErrorInfo:
    def test_kind_and_message(self):
        info = build_error_info(ValueError("bad input"))
        assert info.kind == "ValueError"
        assert info.message == "bad input"

    def test_unraised_exception_has_no_site(self):
        info = build_error_info(KeyError("k"))
        assert info.site is None
        assert "location" not in info.to_dict()

    def test_application_frame_preferred_over_framework(self):
        exc = _raised(APP["load_user"], FRAMEWORK["fetch"])
        info = build_error_info(exc, ("shopapp",))
        assert info.kind == "LookupError"
        assert info.site.function == "load_user"
        assert info.site.owning_unit == "shopapp.service"
        assert info.site.file == "<shopapp.service>"
        assert info.site.line == 3

    def test_falls_back_to_raise_site(self):
        exc = _raised(APP["load_user"], FRAMEWORK["fetch"])
        site = find_error_site(exc, ("otherapp",))
        assert site.function == "execute"
        assert site.owning_unit == "framework.db"

    def test_no_prefixes_uses_raise_site(self):
        exc = _raised(FRAMEWORK["fetch"])
        assert find_error_site(exc).function == "execute"

    def test_to_dict_shape(self):
        info = ErrorInfo("LookupError", "row missing", ErrorSite("svc.py", 12, "load", "shopapp.svc"))
        assert info.to_dict() == {
            "type": "LookupError",
            "message": "row missing",
            "location": {
                "file": "svc.py",
                "line": 12,
                "function": "load",
                "module": "shopapp.svc",
            },
        }


class TestIsAppModule:
    @pytest.mark.parametrize(
        "module, expected",
        [
            ("shopapp", True),
            ("shopapp.service", True),
            ("shopapp.service.users", True),
            ("shopapplication", False),
            ("framework.db", False),
            ("", False),
        ],
    )
    def test_prefix_matching(self, module, expected):
        assert is_app_module(module, ("shopapp",)) is expected
