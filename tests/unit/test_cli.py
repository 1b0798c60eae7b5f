"""Tests for the command-line entry point."""

from decimal import Decimal
from pathlib import Path

import pytest

from main import load_settings, main, parse_args
from src.core.config import Settings
from src.core.db import init_db
from src.core.repository import SqliteRepository
from src.core.schemas import AssignmentStatus


@pytest.fixture()
def config(tmp_path: Path) -> Path:
    """Settings file pointing at a seeded database with one job and one worker."""
    db_path = tmp_path / "booking.db"
    cfg = tmp_path / "settings.yaml"
    cfg.write_text(f"database:\n  path: {db_path}\n")

    repo = SqliteRepository(init_db(db_path))
    site = repo.add_site(name="Andong Elementary", region="Andong", distance_km=50)
    repo.add_worker(name="Kim", home_region="Andong")
    repo.add_job(site_id=site.id, sessions=3, student_count=20, budget=Decimal("300000"))
    repo.connection.close()
    return cfg


class TestParseArgs:
    def test_quote(self) -> None:
        args = parse_args(["quote", "--job", "7", "--no-budget-fit"])
        assert args.command == "quote"
        assert args.job == 7
        assert args.no_budget_fit is True
        assert args.config == "config/settings.yaml"

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])


class TestLoadSettings:
    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        assert load_settings(str(tmp_path / "none.yaml")) == Settings()


class TestMain:
    def test_init_db(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        db_path = tmp_path / "fresh" / "booking.db"
        cfg = tmp_path / "settings.yaml"
        cfg.write_text(f"database:\n  path: {db_path}\n")
        main(["init-db", "--config", str(cfg)])
        assert db_path.exists()
        assert "Database ready" in capsys.readouterr().out

    def test_quote(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["quote", "--job", "1", "--config", str(config)])
        out = capsys.readouterr().out
        assert out.startswith("Quote QT-")
        assert "300,000" in out

    def test_rank(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["rank", "--job", "1", "--config", str(config)])
        out = capsys.readouterr().out
        assert "1. Kim score=65" in out
        assert "same region (Andong)" in out

    def test_process_then_pay(self, config: Path, capsys: pytest.CaptureFixture[str]) -> None:
        main(["process", "--job", "1", "--config", str(config)])
        assert "proposed assignment 1" in capsys.readouterr().out

        repo = SqliteRepository(init_db(Settings.from_yaml(config).database.path))
        with repo.transaction():
            repo.update_assignment_status(1, AssignmentStatus.COMPLETED)
        repo.connection.close()

        main(["pay", "--assignment", "1", "--config", str(config)])
        assert "101,535" in capsys.readouterr().out

    def test_unknown_job_exits_nonzero(
        self, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        with pytest.raises(SystemExit) as exc:
            main(["quote", "--job", "99", "--config", str(config)])
        assert exc.value.code == 1
        assert "job 99 not found" in capsys.readouterr().err

    def test_pay_unfinished_exits_nonzero(
        self, config: Path, capsys: pytest.CaptureFixture[str],
    ) -> None:
        main(["assign", "--job", "1", "--config", str(config)])
        capsys.readouterr()
        with pytest.raises(SystemExit) as exc:
            main(["pay", "--assignment", "1", "--config", str(config)])
        assert exc.value.code == 1
        assert "COMPLETED" in capsys.readouterr().err
