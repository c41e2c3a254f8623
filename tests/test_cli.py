import pytest

from perkcycle.cli import main
from perkcycle.config import get_settings

CSR = "Chase Sapphire Reserve"


@pytest.fixture(autouse=True)
def fresh_settings(monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_validate_bundled_plan(database_url, engine, capsys):
    assert main(["validate", "--plan-id", "sapphire-reserve-2025", "--database-url", database_url]) == 0

    out = capsys.readouterr().out
    assert "MIGRATION VALIDATION REPORT" in out
    assert "VALIDATION PASSED" in out


def test_migrate_defaults_to_dry_run(database_url, seed_account, read_benefits, capsys):
    account_id = seed_account("alice@example.com", card_name=CSR, opened_date="2022-11-20", benefits=[
        {"description": "Old travel credit", "frequency": "YEARLY"},
    ])

    code = main(["migrate", "--plan-id", "sapphire-reserve-2025", "--database-url", database_url])

    out = capsys.readouterr().out
    assert code == 0
    assert "DRY RUN - Affected 1 accounts. Created 6 benefits, deleted 1 benefits." in out
    assert list(read_benefits(account_id)) == ["Old travel credit"]


def test_migrate_live_with_force(database_url, seed_account, read_benefits):
    account_id = seed_account("bob@example.com", card_name=CSR, opened_date="2022-11-20", benefits=[
        {"description": "Old travel credit", "frequency": "YEARLY"},
    ])

    code = main(["migrate", "--plan-id", "sapphire-reserve-2025", "--force", "--database-url", database_url])

    benefits = read_benefits(account_id)
    assert code == 0
    assert "Old travel credit" not in benefits
    assert len(benefits) == 6
    assert len(benefits["DoorDash promo"]) == 2


def test_migrate_needs_exactly_one_plan_source(database_url):
    with pytest.raises(SystemExit) as exc:
        main(["migrate", "--database-url", database_url])
    assert exc.value.code == 2

    with pytest.raises(SystemExit):
        main(["migrate", "plan.yaml", "--plan-id", "sapphire-reserve-2025"])


def test_invalid_plan_file_exits_with_error(database_url, engine, tmp_path, capsys):
    plan = tmp_path / "broken.yaml"
    plan.write_text("id: broken\ntitle: Broken\ncardUpdates: []\n")

    assert main(["migrate", str(plan), "--database-url", database_url]) == 1
    assert "Invalid plan" in capsys.readouterr().err


def test_materialize_at_instant(database_url, seed_account, read_benefits, capsys):
    account_id = seed_account("carol@example.com", benefits=[{"description": "Dining credit", "frequency": "MONTHLY"}])

    code = main(["materialize", "--at", "2025-09-26T00:00:00Z", "--no-notify", "--database-url", database_url])

    assert code == 0
    assert "Statuses: 1/1 ok" in capsys.readouterr().out
    [status] = read_benefits(account_id)["Dining credit"]
    assert status["cycle_end_date"] == "2025-09-30T23:59:59.999Z"
