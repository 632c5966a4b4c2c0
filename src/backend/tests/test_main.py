"""Tests for application startup."""

import os
import subprocess
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]

# Instrumentator metrics live in the global Prometheus registry, so the
# import runs in a fresh interpreter.
IMPORT_APP = """
import buildstate.main as main
assert main._instrumentator is not None
assert "/metrics" in {route.path for route in main.app.routes}
"""


class TestStartup:
    """Tests for importing the application."""

    def test_app_imports_with_metrics_enabled(self):
        env = dict(os.environ)
        env["METRICS_ENABLED"] = "true"
        env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(BACKEND_DIR), env.get("PYTHONPATH")]))

        result = subprocess.run(
            [sys.executable, "-c", IMPORT_APP],
            cwd=BACKEND_DIR,
            env=env,
            capture_output=True,
            text=True,
            timeout=60,
        )

        assert result.returncode == 0, result.stderr

