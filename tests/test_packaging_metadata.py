from __future__ import annotations

import importlib
import re
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]


def _project_value(key: str) -> str:
    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    match = re.search(rf'^{key}\s*=\s*"([^"]+)"', text, flags=re.MULTILINE)
    assert match, f"pyproject.toml no declara {key}"
    return match.group(1)


def test_readme_declarado_existe_y_es_el_del_proyecto() -> None:
    readme = _project_value("readme")

    assert readme == "README.md"
    assert (REPO_ROOT / readme).is_file()


def test_scripts_apuntan_a_funciones_existentes() -> None:
    for key in ("pharmapos", "pharmapos-migrations"):
        module_name, _, attribute = _project_value(key).partition(":")
        assert callable(getattr(importlib.import_module(module_name), attribute))
