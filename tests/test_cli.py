"""Tests for the gcr-poller command-line interface."""

import json
from unittest.mock import patch

import pytest

from poller.cli import main

CONNECTION_ARGS = [
    "--registry-url", "gcr.io",
    "--project", "my-gcp-project",
]


@pytest.fixture
def key_file(tmp_path):
    path = tmp_path / "key.json"
    path.write_text('{"type": "service_account"}')
    return path


@pytest.fixture
def gcr(registry_client):
    """Patch the credential service and registry client used by the CLI."""
    with patch("poller.cli.GoogleCredentialService") as service_cls, \
            patch("poller.cli.GcrClient", return_value=registry_client) as client_cls:
        service_cls.return_value.get_access_token.return_value = "gcr_token"
        yield client_cls


def _write_config(tmp_path, key_file, extra=""):
    config = tmp_path / "poll.yaml"
    config.write_text(
        "repository:\n"
        "  registry_url: gcr.io\n"
        "  project: my-gcp-project\n"
        f"  service_account_file: {key_file.name}\n"
        "package:\n"
        "  image: myimage\n"
        + extra
    )
    return config


def _args(command, key_file, *extra):
    return [command, *CONNECTION_ARGS, "--service-account-file", str(key_file), *extra]


class TestCommands:
    """Tests for the subcommands."""

    def test_no_command_prints_help(self, capsys) -> None:
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_check_repository(self, gcr, key_file, capsys) -> None:
        assert main(_args("check-repository", key_file)) == 0
        assert "Successfully connected to repository" in capsys.readouterr().out

    def test_check_package(self, gcr, key_file, capsys) -> None:
        assert main(_args("check-package", key_file, "--image", "myimage")) == 0
        assert "Successfully connected to package" in capsys.readouterr().out

    def test_latest_revision_json(self, gcr, key_file, capsys) -> None:
        code = main(_args("latest-revision", key_file, "--image", "myimage", "--output-format", "json"))

        assert code == 0
        output = json.loads(capsys.readouterr().out)
        assert output["revision"] == "2.1.0"
        assert output["timestamp"] == "1970-01-01T00:00:00.004Z"

    def test_latest_revision_since_unchanged(self, gcr, key_file, capsys) -> None:
        code = main(_args(
            "latest-revision-since", key_file, "--image", "myimage",
            "--previous-tag", "2.1.0", "--previous-timestamp", "4",
        ))

        assert code == 0
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "No new revision since previous" in captured.err

    def test_list_tags_csv_newest_first(self, gcr, key_file, capsys) -> None:
        assert main(_args("list-tags", key_file, "--image", "myimage", "--tag-filter", "^1")) == 0

        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "tag,uploaded,uploaded_ms"
        assert [line.split(",")[0] for line in lines[1:]] == ["1.1.1", "1.1.0"]

    def test_timeout_and_skip_malformed_reach_client(self, gcr, key_file) -> None:
        main(_args("check-repository", key_file, "--timeout", "5", "--skip-malformed"))
        gcr.assert_called_once_with(timeout=5.0, skip_malformed=True)

    def test_missing_configuration_is_an_error(self, gcr, capsys) -> None:
        assert main(["check-repository", "--project", "my-gcp-project"]) == 1
        assert "GCP service account key not provided" in capsys.readouterr().err

    def test_config_file(self, gcr, key_file, tmp_path, capsys) -> None:
        config = tmp_path / "poll.yaml"
        config.write_text(
            "repository:\n"
            "  registry_url: gcr.io\n"
            "  project: my-gcp-project\n"
            f"  service_account_file: {key_file.name}\n"
            "package:\n"
            "  image: myimage\n"
            "  tag_filter: '^1'\n"
        )

        assert main(["latest-revision", "--config", str(config), "--output-format", "json"]) == 0
        assert json.loads(capsys.readouterr().out)["revision"] == "1.1.1"

    def test_config_file_previous_revision(self, gcr, key_file, tmp_path, capsys) -> None:
        config = _write_config(tmp_path, key_file, "previous:\n  tag: '2.1.0'\n  timestamp: 4\n")

        assert main(["latest-revision", "--config", str(config), "--output-format", "json"]) == 0

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "No new revision since previous" in captured.err

    def test_previous_flags_override_config(self, gcr, key_file, tmp_path, capsys) -> None:
        config = _write_config(tmp_path, key_file, "previous:\n  tag: '2.1.0'\n  timestamp: 4\n")

        code = main([
            "latest-revision-since", "--config", str(config), "--output-format", "json",
            "--previous-tag", "1.1.0", "--previous-timestamp", "2",
        ])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["revision"] == "2.1.0"

    def test_empty_previous_tag_is_still_a_previous_revision(self, gcr, key_file, capsys) -> None:
        code = main(_args(
            "latest-revision-since", key_file, "--image", "myimage", "--output-format", "json",
            "--previous-tag", "", "--previous-timestamp", "4",
        ))

        assert code == 0
        assert json.loads(capsys.readouterr().out)["revision"] == "2.1.0"

    def test_latest_revision_since_requires_previous(self, gcr, key_file, capsys) -> None:
        assert main(_args("latest-revision-since", key_file, "--image", "myimage")) == 1
        assert "No previous revision" in capsys.readouterr().err

    def test_previous_tag_requires_timestamp(self, gcr, key_file, capsys) -> None:
        assert main(_args("latest-revision-since", key_file, "--image", "myimage", "--previous-tag", "")) == 1
        assert "must be given together" in capsys.readouterr().err

    def test_handle_reads_body_file(self, tmp_path, capsys) -> None:
        body = tmp_path / "body.json"
        body.write_text("{}")

        assert main(["handle", "package-configuration", "--body", str(body)]) == 0

        response = json.loads(capsys.readouterr().out)
        assert response["code"] == 200
        assert "DOCKER_IMAGE" in json.loads(response["body"])

    def test_handle_missing_body_file(self, tmp_path, capsys) -> None:
        assert main(["handle", "latest-revision", "--body", str(tmp_path / "nope.json")]) == 1
        assert "Body file not found" in capsys.readouterr().err
