"""
Row-store abstraction over Google Sheets, with an in-memory test double.
"""

from __future__ import annotations

import csv
import io
import json
import re
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

from dat_backend.config import ConfigurationError

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

_A1_RANGE = re.compile(
    r"^(?P<tab>[^!]+)!(?P<c1>[A-Z]+)(?P<r1>\d*)(?::(?P<c2>[A-Z]+)(?P<r2>\d*))?$"
)


class SheetsClient(Protocol):
    """The few value operations the app needs from the spreadsheet."""

    def get_values(self, range_a1: str) -> list[list[str]]:
        ...

    def update_values(
        self, range_a1: str, values: list[list[str]], *, raw: bool = True
    ) -> None:
        ...

    def append_values(self, range_a1: str, values: list[list[str]]) -> None:
        ...


def col_to_a1(index: int) -> str:
    """Zero-based column index -> A1 letters (0 -> 'A', 26 -> 'AA')."""
    n = index + 1
    letters = ""
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(65 + rem) + letters
    return letters


def a1_to_col(letters: str) -> int:
    n = 0
    for ch in letters:
        n = n * 26 + (ord(ch) - 64)
    return n - 1


def parse_a1(range_a1: str) -> tuple[str, int, Optional[int], int, Optional[int]]:
    """Split 'Tab!A2:C9' into (tab, col_start, row_start, col_end, row_end); rows 1-based."""
    match = _A1_RANGE.match(range_a1)
    if not match:
        raise ValueError(f"Unsupported A1 range: {range_a1}")
    c1 = a1_to_col(match.group("c1"))
    c2 = a1_to_col(match.group("c2") or match.group("c1"))
    r1 = int(match.group("r1")) if match.group("r1") else None
    r2_raw = match.group("r2")
    if match.group("c2") is None:
        r2 = r1
    else:
        r2 = int(r2_raw) if r2_raw else None
    return match.group("tab"), c1, r1, c2, r2


def sheet_csv_source(sheets: SheetsClient, range_a1: str) -> Callable[[], str]:
    """Serve a tab as CSV text, standing in for the published CSV export."""

    def read() -> str:
        buffer = io.StringIO()
        csv.writer(buffer, lineterminator="\n").writerows(sheets.get_values(range_a1))
        return buffer.getvalue()

    return read


@dataclass
class InMemorySheetsClient:
    """Test double holding each tab as a list of rows."""

    tabs: dict[str, list[list[str]]] = field(default_factory=dict)
    append_calls: int = 0

    def get_values(self, range_a1: str) -> list[list[str]]:
        tab, c1, r1, c2, r2 = parse_a1(range_a1)
        rows = self.tabs.get(tab, [])
        start = (r1 or 1) - 1
        end = r2 if r2 is not None else len(rows)
        out = []
        for row in rows[start:end]:
            out.append([str(v) for v in row[c1 : c2 + 1]])
        while out and not any(out[-1]):
            out.pop()
        return out

    def update_values(
        self, range_a1: str, values: list[list[str]], *, raw: bool = True
    ) -> None:
        tab, c1, r1, _c2, _r2 = parse_a1(range_a1)
        rows = self.tabs.setdefault(tab, [])
        start = (r1 or 1) - 1
        for offset, new_row in enumerate(values):
            idx = start + offset
            while len(rows) <= idx:
                rows.append([])
            row = rows[idx]
            while len(row) < c1 + len(new_row):
                row.append("")
            for j, value in enumerate(new_row):
                row[c1 + j] = str(value)

    def append_values(self, range_a1: str, values: list[list[str]]) -> None:
        tab, c1, _r1, _c2, _r2 = parse_a1(range_a1)
        rows = self.tabs.setdefault(tab, [])
        for new_row in values:
            rows.append([""] * c1 + [str(v) for v in new_row])
        self.append_calls += 1

    def reset(self) -> None:
        self.tabs.clear()
        self.append_calls = 0


class GoogleSheetsClient:
    """
    Service-account backed client using the Sheets v4 API.
    """

    def __init__(self, spreadsheet_id: str, service_account_json: str):
        if not spreadsheet_id:
            raise ConfigurationError("Missing ALUMNI_SHEET_ID")
        if not service_account_json:
            raise ConfigurationError("GCP_SA_JSON is missing")
        try:
            info = json.loads(service_account_json)
        except json.JSONDecodeError as exc:
            raise ConfigurationError("GCP_SA_JSON is not valid JSON") from exc
        if not info.get("client_email") or not info.get("private_key"):
            raise ConfigurationError("GCP_SA_JSON missing client_email/private_key")
        # Keys pasted into env vars often carry literal "\n" sequences.
        info["private_key"] = info["private_key"].replace("\\n", "\n")

        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        credentials = service_account.Credentials.from_service_account_info(
            info, scopes=SHEETS_SCOPES
        )
        self.spreadsheet_id = spreadsheet_id
        self._values = (
            build("sheets", "v4", credentials=credentials, cache_discovery=False)
            .spreadsheets()
            .values()
        )

    def get_values(self, range_a1: str) -> list[list[str]]:
        result = self._values.get(
            spreadsheetId=self.spreadsheet_id,
            range=range_a1,
            valueRenderOption="UNFORMATTED_VALUE",
        ).execute()
        return [
            ["" if v is None else str(v) for v in row]
            for row in result.get("values", [])
        ]

    def update_values(
        self, range_a1: str, values: list[list[str]], *, raw: bool = True
    ) -> None:
        self._values.update(
            spreadsheetId=self.spreadsheet_id,
            range=range_a1,
            valueInputOption="RAW" if raw else "USER_ENTERED",
            body={"values": values},
        ).execute()

    def append_values(self, range_a1: str, values: list[list[str]]) -> None:
        self._values.append(
            spreadsheetId=self.spreadsheet_id,
            range=range_a1,
            valueInputOption="RAW",
            insertDataOption="INSERT_ROWS",
            body={"values": values},
        ).execute()
