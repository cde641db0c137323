# deskledger/io/statement_export.py
"""Counterpart statement export to pandas / CSV."""

import re

import pandas as pd

from deskledger.domain.models import Statement

COLUMNS = ["Date", "Type", "Description", "Debit", "Credit", "Balance"]


def statement_to_frame(statement: Statement) -> pd.DataFrame:
    """
    One row per statement line. Zero debit/credit cells are left empty (None)
    so they render blank rather than as 0.
    """
    rows = [
        {
            "Date": l.transaction_date.isoformat(),
            "Type": l.transaction_type,
            "Description": l.description,
            "Debit": l.debit_amount or None,
            "Credit": l.credit_amount or None,
            "Balance": l.balance_after,
        }
        for l in statement.lines
    ]
    df = pd.DataFrame(rows, columns=COLUMNS)
    # Keep blanks as object so pandas doesn't turn the column into NaN floats
    df["Debit"] = df["Debit"].astype(object)
    df["Credit"] = df["Credit"].astype(object)
    return df


def statement_to_csv(statement: Statement) -> str:
    """CSV text with a Date,Type,Description,Debit,Credit,Balance header."""
    return statement_to_frame(statement).to_csv(index=False, na_rep="", lineterminator="\n")


def export_filename(statement: Statement) -> str:
    """'<counterpart name>_<CUR>_Statement.csv' with path-unsafe characters replaced."""
    name = re.sub(r"[\\/:*?\"<>|]+", "_", statement.counterpart.name).strip() or "counterpart"
    return f"{name}_{statement.currency}_Statement.csv"
