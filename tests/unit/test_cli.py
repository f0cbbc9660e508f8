"""
ALIGNWATCH Unit Tests - Command Line

Read-only commands against a temporary database; none of them touch the
ephemeris.
"""

import json

import pytest
import yaml

from alignwatch.cli import build_parser, main
from services.cache.database import Database
from services.cache.landmark_store import LandmarkStore
from services.geodesy.geodesy import GeoPoint


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "alignwatch.yaml"
    path.write_text(yaml.safe_dump({
        "store": {"path": str(tmp_path / "events.db")},
        "queue": {"low_priority_mode": False},
        "log_level": "WARNING",
    }))
    return path


def run(capsys, *argv) -> tuple:
    code = main(list(argv))
    return code, capsys.readouterr().out


class TestParser:
    """Argument parsing."""

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_events_dates_parsed(self):
        args = build_parser().parse_args(["events", "2026-01-01", "2026-01-31", "--landmark", "3"])
        assert args.start.isoformat() == "2026-01-01"
        assert args.landmark == 3

    def test_regenerate_landmark_end_optional(self):
        args = build_parser().parse_args(["regenerate-landmark", "3", "2026"])
        assert args.end_year is None


class TestCommands:
    """Commands print JSON and return exit codes."""

    def test_missing_config(self, tmp_path, capsys):
        code = main(["--config", str(tmp_path / "absent.yaml"), "stats"])
        assert code == 2
        assert "not found" in capsys.readouterr().err

    def test_next_fires(self, config_file, capsys):
        code, out = run(capsys, "--config", str(config_file), "next-fires")
        fires = json.loads(out[out.index("{"):])
        assert code == 0
        assert "yearly-calculation" in fires
        assert len(fires) == 9

    def test_stats(self, config_file, capsys):
        code, out = run(capsys, "--config", str(config_file), "stats")
        status = json.loads(out[out.index("{"):])
        assert code == 0
        assert status["running"] is False
        assert status["landmarks"] == 0
        assert status["queue"]["waiting"] == 0

    def test_events_lists_nothing_for_empty_cache(self, config_file, capsys):
        code, out = run(capsys, "--config", str(config_file), "events", "2026-01-01", "2026-12-31")
        assert code == 0
        assert json.loads(out[out.index("["):]) == []

    def test_stats_counts_landmarks(self, tmp_path, config_file, capsys):
        db = Database(tmp_path / "events.db")
        LandmarkStore(db, GeoPoint(35.3628, 138.730781, 3776.0)).add("Tanuki Lake", 35.3645, 138.5789, 1000.0)
        db.close()

        code, out = run(capsys, "--config", str(config_file), "stats")

        assert json.loads(out[out.index("{"):])["landmarks"] == 1


class TestLandmarkCommands:
    """Landmark show, rename and remove; none of them queue a search."""

    @pytest.fixture
    def landmark_id(self, tmp_path, config_file):
        db = Database(tmp_path / "events.db")
        landmark = LandmarkStore(db, GeoPoint(35.3628, 138.730781, 3776.0)).add(
            "Tanuki Lake", 35.3645, 138.5789, 1000.0,
        )
        db.close()
        return landmark.id

    def test_show(self, config_file, landmark_id, capsys):
        code, out = run(capsys, "--config", str(config_file), "landmark", str(landmark_id))
        shown = json.loads(out[out.index("{"):])
        assert code == 0
        assert shown["name"] == "Tanuki Lake"
        assert shown["azimuth_to_peak"] == pytest.approx(90.0, abs=2.0)

    def test_show_unknown(self, config_file, capsys):
        code = main(["--config", str(config_file), "landmark", "99"])
        assert code == 1
        assert "not found" in capsys.readouterr().err

    def test_rename(self, tmp_path, config_file, landmark_id, capsys):
        code, out = run(capsys, "--config", str(config_file), "rename-landmark", str(landmark_id), "Tanuki North")
        assert code == 0
        assert json.loads(out[out.index("{"):])["name"] == "Tanuki North"

        db = Database(tmp_path / "events.db")
        assert LandmarkStore(db, GeoPoint(35.3628, 138.730781, 3776.0)).get(landmark_id).name == "Tanuki North"
        db.close()

    def test_rename_unknown_fails(self, config_file, capsys):
        code = main(["--config", str(config_file), "rename-landmark", "99", "Nowhere"])
        assert code == 1

    def test_remove(self, config_file, landmark_id, capsys):
        code, out = run(capsys, "--config", str(config_file), "remove-landmark", str(landmark_id))
        assert code == 0
        assert json.loads(out[out.index("{"):]) == {"removed": landmark_id}

        code, out = run(capsys, "--config", str(config_file), "stats")
        assert json.loads(out[out.index("{"):])["landmarks"] == 0
