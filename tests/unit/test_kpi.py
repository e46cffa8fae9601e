"""Unit tests for KPI aggregation and cross-checks"""

from qbo_ingest.domain.flattening import flatten_report
from qbo_ingest.domain.kpi import (
    aggregate,
    balance_sheet_kpi,
    cash_flow_kpi,
    category_total,
    cross_checks,
    profit_and_loss_kpi,
    trial_balance_kpi,
)
from qbo_ingest.domain.models import ReportLine, ReportSummary, ReportType


def expense(name, amount, group="Expenses"):
    return ReportLine(path="Expenses", account_name=name, amount=amount, group=group)


def test_category_total_excludes_total_keys():
    node = {"Rent": 100.0, "Utilities": 50.5, "Vaccines": None, "Total Operating Expense": 999.0}

    assert category_total(node, "Total Operating Expense") == 150.5


def test_category_total_is_none_when_empty():
    assert category_total({"Rent": None, "Total Operating Expense": None}, "Total Operating Expense") is None


def test_profit_and_loss_kpi_maps_known_accounts():
    kpi = profit_and_loss_kpi(
        [
            expense("Rent", 3000.0),
            expense("Utilities", 450.5),
            expense("Salary - Physicians", 5000.0),
            expense("Payroll Tax - Physicians", 382.5),
            expense("Interest Expense", 72.0, group="OtherExpenses"),
        ]
    )

    operating = kpi["Operating Expenses"]
    assert operating["Rent"] == 3000.0
    assert operating["Total Operating Expense"] == 3450.5
    payroll = kpi["Payroll Tax Expense"]
    assert payroll["Salary Expense"]["Salary - Physicians"] == 5000.0
    assert payroll["Salary Expense"]["Total Salary"] == 5000.0
    assert payroll["Payroll Expenses"]["Total Payroll Tax"] == 382.5
    assert kpi["Other Expenses"]["Total Other expense"] == 72.0
    assert kpi["Admin"]["Total Admin Expense"] is None


def test_profit_and_loss_kpi_unmatched_accounts_go_to_miscellaneous():
    kpi = profit_and_loss_kpi([expense("Storage Unit", 120.0), expense("Parking", 30.0)])

    misc = kpi["Miscellaneous"]
    assert misc["Storage Unit"] == 120.0
    assert misc["Parking"] == 30.0
    assert misc["Total Miscellaneous"] == 150.0


def test_miscellaneous_total_keeps_accounts_named_like_totals():
    """Only the category's own total key is left out of its subtotal"""
    kpi = profit_and_loss_kpi([expense("Totalizer Fees", 250.0), expense("Parking", 100.0)])

    misc = kpi["Miscellaneous"]
    assert misc["Totalizer Fees"] == 250.0
    assert misc["Total Miscellaneous"] == 350.0


def test_profit_and_loss_kpi_ignores_income_lines():
    kpi = profit_and_loss_kpi([ReportLine(path="Income", account_name="Rent", amount=10.0, group="Income")])

    assert kpi["Operating Expenses"]["Rent"] is None


def test_profit_and_loss_kpi_matches_names_loosely():
    kpi = profit_and_loss_kpi([expense("  bank   charge ", 25.0)])

    assert kpi["Other Expenses"]["Bank Charge"] == 25.0


def test_repeated_accounts_accumulate():
    kpi = profit_and_loss_kpi([expense("Rent", 100.0), expense("Rent", 0.1), expense("Rent", 0.2)])

    assert kpi["Operating Expenses"]["Rent"] == 100.3


def test_cash_flow_kpi_operating_section():
    lines = [ReportLine(path="Operating Activities", account_name="Net Income", amount=1000.0, group="Operating")]
    summaries = [ReportSummary(path="Operating Activities", label="Total", amount=1000.0, group="Operating")]

    kpi = cash_flow_kpi(lines, summaries)

    assert kpi["activities"]["operating"]["Net Income"] == 1000
    assert kpi["totals"]["operating"] == 1000
    assert kpi["totals"]["investing"] == 0.0


def test_cash_flow_kpi_from_stub(stub):
    flat = flatten_report(ReportType.CASH_FLOW, stub("CashFlow"), "123")

    kpi = cash_flow_kpi(flat.lines, flat.summaries)

    assert kpi["totals"]["operating"] == 3400.0
    assert kpi["totals"]["investing"] == -2500.0
    assert kpi["totals"]["financing"] == 200.0
    assert kpi["totals"]["net_cash_flow"] == 1100.0
    assert kpi["totals"]["beginning_cash"] == 10300.0
    assert kpi["totals"]["ending_cash"] == 11400.0
    assert kpi["activities"]["operating"]["Accounts Receivable (A/R)"] == -1200.0


def test_balance_sheet_kpi_from_stub(stub):
    flat = flatten_report(ReportType.BALANCE_SHEET, stub("BalanceSheet"), "123")

    kpi = balance_sheet_kpi(flat.lines)

    assets = kpi["sections"]["assets"]
    assert assets["current_assets"] == {"Operating Checking": 11400.0, "Accounts Receivable (A/R)": 3200.0}
    assert assets["fixed_assets"] == {"Medical Equipment": 2500.0}
    assert kpi["sections"]["liabilities"]["current_liabilities"] == {"Accounts Payable (A/P)": 1650.0}
    assert kpi["sections"]["liabilities"]["long_term_liabilities"] == {"Notes Payable": 5000.0}
    assert kpi["sections"]["equity"]["total"] == 10450.0
    assert kpi["totals"] == {"total_assets": 17100.0, "total_liabilities_and_equity": 17100.0}


def test_trial_balance_kpi_from_stub(stub):
    flat = flatten_report(ReportType.TRIAL_BALANCE, stub("TrialBalance"), "123")

    kpi = trial_balance_kpi(flat.lines)

    assert kpi["totals"] == {"debit": 35250.0, "credit": 35250.0, "difference": 0.0}
    assert kpi["categories"]["Revenue"] == {"debit": 0.0, "credit": 18000.0}
    assert kpi["categories"]["Cash & Cash Equivalents"]["debit"] == 21400.0


def test_aggregate_adds_envelope(stub):
    flat = flatten_report(ReportType.PROFIT_AND_LOSS, stub("ProfitAndLoss"), "123")

    kpi = aggregate(ReportType.PROFIT_AND_LOSS, flat.lines, flat.summaries)

    assert kpi["report_type"] == "ProfitAndLoss"
    assert "generated_at" in kpi
    assert kpi["Miscellaneous"]["Storage Unit"] == 120.0
    assert kpi["Payroll Tax Expense"]["Payroll Expenses"]["Payroll Tax - Physicians"] == 382.5


def test_cross_checks_balance_for_stubs(stub):
    for report_type in ReportType:
        flat = flatten_report(report_type, stub(report_type.value), "123")

        checks = cross_checks(report_type, flat.lines, flat.summaries)

        assert checks, report_type
        assert all(check.balanced for check in checks), [c for c in checks if not c.balanced]


def test_cross_check_flags_mismatch():
    lines = [ReportLine(path="Income", account_name="Services", amount=100.0, group="Income")]
    summaries = [ReportSummary(path="", label="Net Income", amount=90.0, group="NetIncome")]

    (check,) = cross_checks(ReportType.PROFIT_AND_LOSS, lines, summaries)

    assert check.name == "net_income"
    assert check.calculated == 100.0
    assert check.reported == 90.0
    assert check.balanced is False
