"""Command-line entry point."""

from unittest.mock import patch

import pytest
from docker.errors import DockerException

from mongoperf import main as cli
from mongoperf.errors import StoreConnectionError
from mongoperf.store import MongoStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "MONGOPERF_URI",
        "MONGOPERF_TIMEOUT_SECONDS",
        "MONGOPERF_CONNECT_TIMEOUT_SECONDS",
        "MONGOPERF_CSV_PATH",
        "MONGOPERF_CHART_PATH",
        "MONGOPERF_DOCKER_IMAGE",
        "MONGOPERF_LOG_LEVEL",
        "MONGOPERF_LOG_FILE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def scenario_file(tmp_path, scenario_yaml):
    path = tmp_path / "scenario.yaml"
    path.write_text(scenario_yaml, encoding="utf-8")
    return path


class TestRun:

    def test_dry_run(self, scenario_file, capsys):
        with patch.object(MongoStore, "connect") as connect:
            assert cli.run([str(scenario_file), "--dry-run"]) == 0

        connect.assert_not_called()
        out = capsys.readouterr().out
        assert "Scenario: testdb.trainers (parallel=2, buffer=10)" in out
        assert "  - insert-seed: action=InsertOne repeat=3" in out

    def test_full_run(self, scenario_file, store, tmp_path, capsys):
        csv_path = tmp_path / "out" / "stats.csv"
        chart_path = tmp_path / "out" / "stats.png"
        log_path = tmp_path / "logs" / "run.log"

        with patch.object(MongoStore, "connect", return_value=store) as connect:
            code = cli.run(
                [
                    str(scenario_file),
                    "--uri",
                    "mongodb://db:27017",
                    "--csv",
                    str(csv_path),
                    "--chart",
                    str(chart_path),
                    "--log-file",
                    str(log_path),
                    "--drop-collection",
                ]
            )

        assert code == 0
        connect.assert_called_once_with("mongodb://db:27017", "testdb", "trainers", 60.0)
        out = capsys.readouterr().out
        assert "  > Name:              insert-seed" in out
        assert "QueryCount:        3" in out
        assert csv_path.exists()
        assert chart_path.exists()
        assert log_path.exists()
        assert store.closed
        assert store.dropped

    def test_environment_defaults(self, scenario_file, store, tmp_path, monkeypatch):
        monkeypatch.setenv("MONGOPERF_URI", "mongodb://env:27017")
        monkeypatch.setenv("MONGOPERF_CONNECT_TIMEOUT_SECONDS", "5")
        monkeypatch.setenv("MONGOPERF_CSV_PATH", str(tmp_path / "env.csv"))

        with patch.object(MongoStore, "connect", return_value=store) as connect:
            assert cli.run([str(scenario_file)]) == 0

        connect.assert_called_once_with("mongodb://env:27017", "testdb", "trainers", 5.0)
        assert (tmp_path / "env.csv").exists()

    def test_docker_image_provides_uri(self, scenario_file, store):
        with patch("mongoperf.docker_control.StoreContainerManager") as manager, patch.object(
            MongoStore, "connect", return_value=store
        ) as connect:
            manager.return_value.run.return_value.__enter__.return_value = "mongodb://localhost:49153"

            assert cli.run([str(scenario_file), "--docker-image", "mongo:7"]) == 0

        assert connect.call_args.args[0] == "mongodb://localhost:49153"
        manager.return_value.run.return_value.__exit__.assert_called_once()

    def test_docker_unavailable(self, scenario_file, capsys):
        with patch("mongoperf.docker_control.docker.from_env", side_effect=DockerException("daemon not running")):
            assert cli.run([str(scenario_file), "--docker-image", "mongo:7"]) == 1

        assert "connection failed: docker unavailable: daemon not running" in capsys.readouterr().err

    def test_invalid_scenario(self, tmp_path, capsys):
        path = tmp_path / "broken.yaml"
        path.write_text("Database: db\nCollection: col\nQueries: []\n", encoding="utf-8")

        assert cli.run([str(path)]) == 1
        assert "invalid scenario: Queries must not be empty" in capsys.readouterr().err

    def test_no_runnable_queries(self, tmp_path, store, capsys):
        path = tmp_path / "unsupported.yaml"
        path.write_text(
            "Database: db\nCollection: col\nQueries:\n  - Name: purge\n    Action: DeleteMany\n",
            encoding="utf-8",
        )

        with patch.object(MongoStore, "connect", return_value=store):
            assert cli.run([str(path)]) == 1

        assert "no runnable queries" in capsys.readouterr().err
        assert store.closed

    def test_connection_failure(self, scenario_file, capsys):
        with patch.object(MongoStore, "connect", side_effect=StoreConnectionError("unreachable")):
            assert cli.run([str(scenario_file)]) == 1

        assert "connection failed: unreachable" in capsys.readouterr().err

    def test_rejects_non_positive_timeout(self, scenario_file, capsys):
        assert cli.run([str(scenario_file), "--timeout", "0"]) == 1
        assert "--timeout must be > 0" in capsys.readouterr().err


class TestEnvFloat:

    def test_parses_value(self):
        assert cli.env_float({"X": "2.5"}, "X", None) == 2.5

    def test_missing_uses_default(self):
        assert cli.env_float({}, "X", 7.0) == 7.0
        assert cli.env_float({"X": ""}, "X", 7.0) == 7.0

    @pytest.mark.parametrize("raw", ["soon", "0", "-3"])
    def test_invalid_warns(self, raw, capsys):
        assert cli.env_float({"X": raw}, "X", 7.0) == 7.0
        assert "invalid X value" in capsys.readouterr().err
