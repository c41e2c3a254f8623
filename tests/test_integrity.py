from perkcycle.services.integrity import check_benefit_integrity


def _status(start, end):
    return {"cycle_start_date": start, "cycle_end_date": end}


def test_clean_store_has_no_issues(store, seed_account):
    seed_account("alice@example.com", benefits=[{
        "description": "Q3: Jul-Sep - Exclusive Tables",
        "frequency": "QUARTERLY",
        "statuses": [_status("2025-07-01T00:00:00.000Z", "2025-09-30T23:59:59.999Z")],
    }])

    assert check_benefit_integrity(store) == []


def test_wrong_quarter_and_december_windows_are_reported(store, seed_account):
    seed_account("bob@example.com", benefits=[
        {
            "description": "Q3: Jul-Sep - Exclusive Tables",
            "frequency": "QUARTERLY",
            "statuses": [_status("2025-01-01T00:00:00.000Z", "2025-03-31T23:59:59.999Z")],
        },
        {
            "description": "December holiday credit",
            "frequency": "MONTHLY",
            "statuses": [_status("2025-11-01T00:00:00.000Z", "2025-11-30T23:59:59.999Z")],
        },
    ])

    issues = check_benefit_integrity(store)

    assert [issue.type for issue in issues] == ["QUARTERLY_MISMATCH", "DECEMBER_MISMATCH"]
    assert issues[0].user_email == "bob@example.com"
    assert issues[0].cycle_info == "Q3: Jul-Sep - Exclusive Tables: 2025-01-01 -> 2025-03-31"
    assert "Expected: 7" in issues[0].reason
    assert issues[1].to_dict()["type"] == "DECEMBER_MISMATCH"


def test_limit_caps_reported_issues(store, seed_account):
    seed_account("carol@example.com", benefits=[{
        "description": "December holiday credit",
        "frequency": "MONTHLY",
        "statuses": [
            _status(f"2025-{month:02d}-01T00:00:00.000Z", f"2025-{month:02d}-28T00:00:00.000Z")
            for month in range(1, 6)
        ],
    }])

    assert len(check_benefit_integrity(store, limit=3)) == 3


def test_unreadable_account_is_reported(store, seed_account):
    broken = seed_account("dan@example.com", opened_date="11/20/2022")

    [issue] = check_benefit_integrity(store)

    assert issue.type == "UNREADABLE_ACCOUNT"
    assert issue.user_email == "dan@example.com"
    assert issue.cycle_info == f"account {broken}"
