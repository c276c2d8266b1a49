"""Static checks on the Streamlit entry point and views."""

from __future__ import annotations

import ast
import re
from pathlib import Path

PKG = Path(__file__).resolve().parents[1] / "swaprunn"
APP_MODULE = PKG / "app.py"
VIEWS = sorted((PKG / "views").glob("*.py"))


def _module_constants(path: Path) -> dict[str, ast.AST]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    values: dict[str, ast.AST] = {}
    for node in tree.body:
        if isinstance(node, ast.Assign):
            for target in node.targets:
                if isinstance(target, ast.Name):
                    values[target.id] = node.value
    return values


def test_page_funcs_are_nav_keys() -> None:
    consts = _module_constants(APP_MODULE)
    nav_keys = [elt.value for elt in consts["NAV_KEYS"].elts]  # type: ignore[attr-defined]
    page_keys = [k.value for k in consts["PAGE_FUNCS"].keys]  # type: ignore[attr-defined]

    assert nav_keys[0] == "Dashboard"
    assert len(nav_keys) == len(set(nav_keys))
    assert set(page_keys) <= set(nav_keys)


def test_go_targets_exist() -> None:
    consts = _module_constants(APP_MODULE)
    nav_keys = {elt.value for elt in consts["NAV_KEYS"].elts}  # type: ignore[attr-defined]
    for view in VIEWS:
        for target in re.findall(r"\bgo\(\s*\"([^\"]+)\"", view.read_text(encoding="utf-8")):
            assert target in nav_keys, f"{view.name} navigates to unknown page {target!r}"


def test_static_button_keys_unique_per_view() -> None:
    for view in VIEWS:
        src = view.read_text(encoding="utf-8")
        keys = re.findall(r"key=\"([^\"{}]+)\"", src)
        assert len(keys) == len(set(keys)), f"duplicate widget keys in {view.name}"


def test_no_multipage_pages_dir_next_to_entry() -> None:
    # Streamlit would turn every module in swaprunn/pages/ into a page.
    assert not (PKG / "pages").exists()


def _calls_in(path: Path, func_name: str) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    for node in tree.body:
        if isinstance(node, ast.FunctionDef) and node.name == func_name:
            return {
                call.func.id
                for call in ast.walk(node)
                if isinstance(call, ast.Call) and isinstance(call.func, ast.Name)
            }
    raise AssertionError(f"{func_name} not found in {path.name}")


def test_page_runs_and_sign_out_release_live_counters() -> None:
    main_calls = _calls_in(APP_MODULE, "main")
    assert {"begin_unread_run", "end_unread_run"} <= main_calls
    assert "inbox_badge" in _calls_in(APP_MODULE, "build_sidebar")
    assert "release_unread_watches" in _calls_in(PKG / "login.py", "logout")
