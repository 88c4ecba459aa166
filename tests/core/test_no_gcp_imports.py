from __future__ import annotations

import builtins
import importlib
import sys

import pytest

CORE_MODULES = (
    "credhook_core.config",
    "credhook_core.webhooks",
    "credhook_core.webhooks.dispatcher",
    "credhook_core.monitor",
    "credhook_core.stores",
)


@pytest.mark.core
def test_no_gcp_imports(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(sys.modules):
        if name == "credhook_core" or name.startswith("credhook_core."):
            monkeypatch.delitem(sys.modules, name)

    real_import = builtins.__import__

    def guarded_import(name, globals=None, locals=None, fromlist=(), level=0):
        if name == "google" or name.startswith("google."):
            raise AssertionError(f"GCP import detected in Core: {name}")
        return real_import(name, globals, locals, fromlist, level)

    monkeypatch.setattr(builtins, "__import__", guarded_import)
    for module in CORE_MODULES:
        importlib.import_module(module)
