"""Tests for buildspec templating."""

import shlex

import yaml

from gridrun.runtimes.buildspec import buildspec_document, render_buildspec


class TestProjectBuildspec:
    def test_document_shape(self, settings):
        document = yaml.safe_load(render_buildspec(settings))

        assert document["version"] == 0.2
        assert list(document["phases"]) == ["install", "pre_build", "build", "post_build"]
        assert document["phases"]["install"]["runtime-versions"] == {"python": "3.12"}
        assert document["cache"] == {"paths": [".cache/pip/**/*"]}

    def test_worker_never_dispatches_again(self, settings):
        variables = buildspec_document(settings)["env"]["variables"]
        assert variables["GRIDRUN_USE_GRID"] == "0"
        assert variables["GRIDRUN_TEST_HOST"] == "localhost"

    def test_project_default_runs_no_tests(self, settings):
        [command] = buildspec_document(settings)["phases"]["build"]["commands"]
        assert command.startswith("echo")

    def test_compose_file_is_optional(self, settings):
        with_compose = buildspec_document(settings)["phases"]["pre_build"]["commands"]
        assert any("docker compose" in c for c in with_compose)

        without = settings.model_copy(update={"compose_file": None})
        commands = buildspec_document(without)["phases"]["pre_build"]["commands"]
        assert not any("docker compose" in c for c in commands)

    def test_passthrough_variables_are_forwarded(self, settings, monkeypatch):
        monkeypatch.setenv("BROWSER", "firefox")
        variables = buildspec_document(settings)["env"]["variables"]
        assert variables["BROWSER"] == "firefox"


class TestJobBuildspec:
    def test_job_runs_selector_for_one_invocation(self, settings):
        invocation = "tests.test_search.test_title([str=google.com],[str=Google])"
        document = yaml.safe_load(
            render_buildspec(settings, "tests/test_search.py::test_title", invocation),
        )

        [command] = document["phases"]["build"]["commands"]
        assert command == (
            f"GRIDRUN_INVOCATION_ID={shlex.quote(invocation)} "
            "python -m pytest -p gridrun.pytest_plugin -rA tests/test_search.py::test_title"
        )

    def test_job_without_invocation_runs_whole_selector(self, settings):
        [command] = buildspec_document(settings, "tests/test_api.py")["phases"]["build"]["commands"]
        assert command == "python -m pytest -p gridrun.pytest_plugin -rA tests/test_api.py"
