"""CodeBuild buildspec templating.

Two flavours are rendered from the same template:

* the project-level buildspec stored on the CodeBuild project when it is
  created (no test command, used only as the project default);
* the per-job buildspec sent as ``buildspecOverride`` on every job, which runs
  ``python -m pytest <work selector>`` with ``GRIDRUN_INVOCATION_ID`` set so
  the remote worker executes exactly one parameterization.

The remote worker must never dispatch again, so ``GRIDRUN_USE_GRID`` is
always pinned to ``0`` in the job environment.
"""

from __future__ import annotations

import shlex
from typing import Any

import yaml

from gridrun.core.settings import GridSettings

BUILD_PHASE_START = "Entering phase BUILD"
BUILD_PHASE_END = "Phase complete: BUILD"


def _test_command(work_selector: str | None, invocation_id: str | None) -> str:
    if work_selector is None:
        return "echo 'no work selector for this build'"
    command = f"python -m pytest -p gridrun.pytest_plugin -rA {shlex.quote(work_selector)}"
    if invocation_id:
        command = f"GRIDRUN_INVOCATION_ID={shlex.quote(invocation_id)} {command}"
    return command


def buildspec_document(
    settings: GridSettings,
    work_selector: str | None = None,
    invocation_id: str | None = None,
) -> dict[str, Any]:
    """Build the buildspec as a plain mapping."""
    variables = {
        "GRIDRUN_USE_GRID": "0",
        "GRIDRUN_TEST_HOST": settings.test_host,
        "PIP_CACHE_DIR": ".cache/pip",
    }
    variables.update(settings.forwarded_env())

    pre_build = [
        'export LC_ALL="en_US.utf8"',
        "python --version",
        "pwd",
        "ls -al",
        "python -m pip install --upgrade pip",
        "python -m pip install -e '.[test]'",
    ]
    post_build = ['echo "Post build cleanup"']
    if settings.compose_file:
        compose = shlex.quote(settings.compose_file)
        pre_build += [
            f"if [ -f {compose} ]; then docker compose -f {compose} up --detach; sleep 5; fi",
        ]
        post_build += [
            f"if [ -f {compose} ]; then docker compose -f {compose} down --remove-orphans; fi",
        ]

    return {
        "version": 0.2,
        "env": {"variables": variables},
        "phases": {
            "install": {"runtime-versions": {"python": settings.python_version}},
            "pre_build": {"commands": pre_build},
            "build": {"commands": [_test_command(work_selector, invocation_id)]},
            "post_build": {"commands": post_build},
        },
        "cache": {"paths": [".cache/pip/**/*"]},
    }


def render_buildspec(
    settings: GridSettings,
    work_selector: str | None = None,
    invocation_id: str | None = None,
) -> str:
    """Render the buildspec YAML for a project (no selector) or one job."""
    document = buildspec_document(settings, work_selector, invocation_id)
    return yaml.safe_dump(document, sort_keys=False, default_flow_style=False, width=4096)
