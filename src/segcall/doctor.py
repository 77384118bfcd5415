"""Environment self-checks.

This module powers the ``segcall doctor`` CLI command. The caller is pure
Python but depends on the scientific stack (numpy, scipy, scikit-learn) and,
for diagnostics, on matplotlib and jinja2. Wrappers that launch the caller
as a subprocess can run ``segcall doctor`` first to fail early with a clear
message.
"""

from __future__ import annotations

import importlib
import logging
import platform
from dataclasses import dataclass
from typing import Dict, Optional

logger = logging.getLogger(__name__)

# import name -> distribution name on PyPI
REQUIRED_MODULES: Dict[str, str] = {
    "numpy": "numpy",
    "scipy": "scipy",
    "sklearn": "scikit-learn",
    "tqdm": "tqdm",
}
DIAGNOSTIC_MODULES: Dict[str, str] = {
    "matplotlib": "matplotlib",
    "jinja2": "jinja2",
}


@dataclass(frozen=True)
class CheckResult:
    name: str
    ok: bool
    detail: str
    howto: Optional[str] = None


def check_python() -> CheckResult:
    v = platform.python_version()
    return CheckResult(name="python", ok=True, detail=f"Python {v}")


def check_module(name: str, *, dist: str) -> CheckResult:
    try:
        mod = importlib.import_module(name)
    except ImportError as e:
        return CheckResult(
            name=name,
            ok=False,
            detail=f"cannot import: {e}",
            howto=f"pip install {dist}",
        )
    version = getattr(mod, "__version__", "unknown version")
    return CheckResult(name=name, ok=True, detail=f"{dist} {version}")


def collect_checks(*, diagnostics: bool = True) -> Dict[str, CheckResult]:
    """Run all checks and return a mapping name->result."""
    checks: Dict[str, CheckResult] = {"python": check_python()}
    modules = dict(REQUIRED_MODULES)
    if diagnostics:
        modules.update(DIAGNOSTIC_MODULES)
    for name, dist in modules.items():
        checks[name] = check_module(name, dist=dist)
        logger.debug("check %s: %s", name, checks[name].detail)
    return checks
