"""``readlog-admin`` subcommands against a scratch database."""

import pytest

from readlog.cli import build_parser, main


def test_rebuild_on_an_empty_database(tmp_path, capsys):
    database = str(tmp_path / "cli.db")

    assert main(["--database", database, "init-db"]) == 0
    assert main(["--database", database, "rebuild", "--orphan-policy", "prune"]) == 0

    out = capsys.readouterr().out
    assert "status=completed" in out
    assert "policy=prune" in out


def test_refresh_of_a_missing_entity_reports_it_as_orphaned(tmp_path, capsys):
    database = str(tmp_path / "cli.db")

    assert main(["--database", database, "refresh", "book", "7"]) == 0
    assert "orphaned=1" in capsys.readouterr().out


def test_unknown_entity_type_is_a_usage_error():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["refresh", "movie", "1"])
