#!/usr/bin/env python3
"""
generate_messy_roster.py

Generates sample-data/messy_roster.csv - an HR export assembled by hand from
two payroll systems: loose header names, padded cells, mixed date styles,
country names instead of codes, trunk-prefixed phone numbers, a duplicated
employee id and one disallowed email domain.

Run: python sample-data/generate_messy_roster.py
"""

import csv
from pathlib import Path

OUT = Path(__file__).parent / "messy_roster.csv"

HEADERS = [
    "Emp ID", "First Name", "Surname", "E-mail", "Hire Date", "Dept", "Business Unit",
    "Job Title", "Territory", "Mobile", "Office Phone", "Sex", "Nation", "Town", "DOB",
    "Lang", "Notes",
]

ROWS = [
    # Clean baseline
    ["E-001", "Ada", "Lovelace", "ada@example.com", "2021-05-07", "Engineering", "R&D",
     "Engineer", "East", "+12015550123", "", "female", "USA", "Boston", "1990-12-10",
     "English", ""],
    # Padded cells, upper-case id, US date, alpha-2 country
    ["  E-002 ", "  Grace   Brewster ", "Hopper", " GRACE@Example.com ", "07/05/2021",
     "Engineering", "R&D", "Admiral", "East", "2015550123", "", "Female", "us", "Arlington",
     "12/09/1906", "English", ""],
    # Excel serial start date, full country name
    ["E-003", "Alan", "Turing", "alan@example.org", "44321", "Research", "R&D", "Scientist",
     "West", "+12015550123", "+12015550123", "male", "United States", "Denver", "1912-06-23",
     "English", "contractor"],
    # Duplicate id (case-insensitive), disallowed email domain
    ["e-001", "Katherine", "Johnson", "katherine@nasa.xyz", "2019-02-01", "Research", "R&D",
     "Analyst", "South", "+12015550123", "", "female", "USA", "Hampton", "1918-08-26",
     "English", ""],
    # Missing required values, unknown gender, bad date
    ["E-005", "", "Hamilton", "margaret@example.net", "not a date", "", "R&D", "Lead",
     "North", "0015550123", "", "unknown", "Atlantis", "Paoli", "1936-08-17", "English", ""],
]


def main() -> None:
    with OUT.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(HEADERS)
        writer.writerows(ROWS)
    print(f"Written: {OUT}")


if __name__ == "__main__":
    main()
