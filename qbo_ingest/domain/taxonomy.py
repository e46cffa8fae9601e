"""
Static lookup tables used to classify flattened lines.

The expense taxonomy is business-owned data: the default below can be
replaced at runtime with a JSON file of the same shape (see
`KpiTaxonomy.from_file`).
"""

import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

MISCELLANEOUS = "Miscellaneous"
MISCELLANEOUS_TOTAL = "Total Miscellaneous"

# category -> {"total": <total key>, "accounts": [...]} or {"subcategories": {...}}
DEFAULT_EXPENSE_TAXONOMY: Dict[str, Any] = {
    "Operating Expenses": {
        "total": "Total Operating Expense",
        "accounts": [
            "Cleaning - office",
            "Clinical Tool Licensure",
            "Equipment Maint. & Repair",
            "Legal & Accounting",
            "Medical Supplies",
            "Patient Notification Tools",
            "Office Expenses",
            "Practice Mgmt Software Lease",
            "Rent",
            "Telephone Office",
            "Utilities",
            "Vaccines",
            "Website Expense",
            "Workmans Comp Ins",
        ],
    },
    "Admin": {
        "total": "Total Admin Expense",
        "accounts": [
            "Physician Admin Expense",
            "Practice Manager Admin Expense",
        ],
    },
    "Dues, Subscriptions & License": {
        "total": "Total Dues, Subs & Lic",
        "accounts": [
            "Dues, Subs & Lic - Physicians",
            "Dues, Subs & Lic - Associates",
            "Dues, Subs & Lic - Staff",
        ],
    },
    "Payroll Tax Expense": {
        "subcategories": {
            "Payroll Expenses": {
                "total": "Total Payroll Tax",
                "accounts": [
                    "Payroll Tax - Physicians",
                    "Payroll Tax - Associates",
                    "Payroll Tax - Office Staff",
                ],
            },
            "Salary Expense": {
                "total": "Total Salary",
                "accounts": [
                    "Payroll - Office Staff",
                    "Salary - Physicians",
                    "Salary - Associates",
                ],
            },
        },
    },
    "Other Expenses": {
        "total": "Total Other expense",
        "accounts": [
            "Bank Charge",
            "Meals & Entertainment",
            "Profit Sharing",
            "Refunds",
            "Reimbursement",
            "Service fee",
            "Interest Expense",
        ],
    },
    "Health Insurance Expense (Medical)": {
        "total": "Total Medical Expense",
        "accounts": [
            "Health Insurance - Employee",
            "Health Insurance - Physicians",
        ],
    },
}


def _normalize(name: str) -> str:
    return " ".join(name.split()).casefold()


class KpiTaxonomy:
    """Account name -> KPI slot lookup built from a nested category tree"""

    def __init__(self, categories: Dict[str, Any]):
        self.categories = categories
        self._slots: Dict[str, Tuple[Tuple[str, ...], str]] = {}
        self._totals: Dict[Tuple[str, ...], str] = {}
        for category, node in categories.items():
            self._index((category,), node)

    def _index(self, path: Tuple[str, ...], node: Any) -> None:
        if not isinstance(node, dict):
            raise ValueError(f"Taxonomy node {' > '.join(path)} must be an object")
        if "subcategories" in node:
            for name, child in node["subcategories"].items():
                self._index(path + (name,), child)
            return
        accounts = node.get("accounts")
        if not isinstance(accounts, list):
            raise ValueError(f"Taxonomy node {' > '.join(path)} needs an 'accounts' list")
        self._totals[path] = node.get("total") or f"Total {path[-1]}"
        for account in accounts:
            self._slots[_normalize(account)] = (path, account)

    @classmethod
    def default(cls) -> "KpiTaxonomy":
        return cls(DEFAULT_EXPENSE_TAXONOMY)

    @classmethod
    def from_file(cls, path: str | Path) -> "KpiTaxonomy":
        with open(path, encoding="utf-8") as fh:
            return cls(json.load(fh))

    def slot_for(self, account_name: Optional[str]) -> Optional[Tuple[Tuple[str, ...], str]]:
        """(category path, canonical account key) for a name, or None when unmatched"""
        if not account_name:
            return None
        return self._slots.get(_normalize(account_name))

    def category_for(self, account_name: Optional[str]) -> str:
        slot = self.slot_for(account_name)
        return slot[0][0] if slot else MISCELLANEOUS

    def total_keys(self) -> Dict[Tuple[str, ...], str]:
        return dict(self._totals)

    def empty_tree(self) -> Dict[str, Any]:
        """Fresh KPI tree with every account slot and total key set to None"""
        tree: Dict[str, Any] = {}
        for (path, account) in self._slots.values():
            node = tree
            for part in path:
                node = node.setdefault(part, {})
            node[account] = None
        for path, total_key in self._totals.items():
            node = tree
            for part in path:
                node = node.setdefault(part, {})
            node[total_key] = None
        tree[MISCELLANEOUS] = {MISCELLANEOUS_TOTAL: None}
        return tree


# Trial balance account categories, first match wins.
ACCOUNT_CATEGORY_RULES: List[Tuple[str, Tuple[str, ...]]] = [
    ("Cash & Cash Equivalents", ("cash", "bank", "checking", "savings")),
    ("Accounts Receivable", ("receivable", "a/r")),
    ("Inventory", ("inventory",)),
    ("Prepaid Expenses", ("prepaid",)),
    ("Fixed Assets", ("equipment", "furniture", "vehicle", "building", "land")),
    ("Credit Card Payable", ("credit card",)),
    ("Accounts Payable", ("payable", "a/p")),
    ("Long Term Debt", ("loan", "debt", "mortgage")),
    ("Owner's Equity", ("equity", "capital", "retained earnings", "owner")),
    ("Revenue", ("revenue", "income", "sales")),
    ("Operating Expenses", ("expense", "cost", "payroll", "salary")),
]
DEFAULT_ACCOUNT_CATEGORY = "Other"

_CATEGORY_PATTERNS = [
    (category, re.compile(r"(?<!\w)(" + "|".join(re.escape(k) for k in keywords) + r")", re.IGNORECASE))
    for category, keywords in ACCOUNT_CATEGORY_RULES
]


def account_category(account_name: Optional[str]) -> Optional[str]:
    """Broad category of a trial balance account by keyword"""
    if not account_name:
        return None
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(account_name):
            return category
    return DEFAULT_ACCOUNT_CATEGORY
