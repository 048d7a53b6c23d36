import ast
import os
import re
import sys

import pytest

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# import name -> distribution name on the index
DISTRIBUTIONS = {"flask": "flask", "werkzeug": "werkzeug", "pandas": "pandas",
                 "pytz": "pytz", "reportlab": "reportlab"}


def _pyproject():
    with open(os.path.join(ROOT, "pyproject.toml"), encoding="utf-8") as f:
        return f.read()


def _declared(text):
    block = re.search(r"^dependencies = \[(.*?)\]", text, re.S | re.M).group(1)
    return {re.split(r"[<>=!~ ]", d.strip().strip('",'))[0].lower()
            for d in block.splitlines() if d.strip()}


def _top_level_imports(path):
    with open(path, encoding="utf-8") as f:
        tree = ast.parse(f.read())
    names = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(a.name.split(".")[0] for a in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module and not node.level:
            names.add(node.module.split(".")[0])
    return names


def test_every_third_party_import_is_declared():
    if not hasattr(sys, "stdlib_module_names"):
        pytest.skip("needs Python 3.10+")
    text = _pyproject()
    modules = re.findall(r'^\s+"(\w+)",$', re.search(r"py-modules = \[(.*?)\]", text, re.S).group(1), re.M)
    sources = [os.path.join(ROOT, f"{m}.py") for m in modules]
    sources.append(os.path.join(ROOT, "tools", "import_prices_from_csv.py"))

    imported = set()
    for path in sources:
        imported |= _top_level_imports(path)
    third_party = imported - set(modules) - set(sys.stdlib_module_names)

    declared = _declared(text)
    assert third_party <= set(DISTRIBUTIONS), f"unmapped imports: {third_party - set(DISTRIBUTIONS)}"
    assert {DISTRIBUTIONS[name] for name in third_party} <= declared
