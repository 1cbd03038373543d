#!/usr/bin/env python3
"""
Visit Tracker - Interactive Menu Launcher
Numbered menu over the visittrack CLI.

Usage:
    python main.py
"""

import subprocess
import sys
import os

PYTHON = sys.executable
VISITTRACK = [PYTHON, "-m", "visittrack.cli.main"]

# Project root on PYTHONPATH so 'visittrack' is importable without installing
ENV = os.environ.copy()
ENV["PYTHONPATH"] = os.path.dirname(os.path.abspath(__file__))


def run(args: list[str]):
    """Run a CLI command and return to menu when done."""
    print()
    subprocess.run(VISITTRACK + args, env=ENV)
    print()
    input("  Press Enter to return to menu...")


def prompt(label: str, required: bool = True) -> str:
    while True:
        value = input(f"  {label}: ").strip()
        if value:
            return value
        if not required:
            return ""
        print("  (required - please enter a value)")


def prompt_optional(label: str) -> str:
    return prompt(f"{label} (optional, Enter to skip)", required=False)


def clear():
    os.system("cls" if os.name == "nt" else "clear")


# =============================================================================
# COMMAND HANDLERS
# =============================================================================

def visits_list():
    args = ["visits", "list"]
    s = prompt_optional("Filter by status (scheduled/completed/cancelled)")
    h = prompt_optional("Filter by hotel id")
    d = prompt_optional("Filter by date (YYYY-MM-DD)")
    if s: args += ["--status", s]
    if h: args += ["--hotel", h]
    if d: args += ["--date", d]
    run(args)

def visits_show():
    run(["visits", "show", prompt("Visit ID")])

def visits_schedule():
    args = ["visits", "schedule",
            "--hotel", prompt("Hotel ID (e.g. hotel_002)"),
            "--date", prompt("Date (YYYY-MM-DD)")]
    t = prompt_optional("Time (HH:MM, default 09:00)")
    p = prompt_optional("Purpose")
    c = prompt_optional("Contact person")
    e = prompt_optional("Contact email")
    n = prompt_optional("Notes")
    if t: args += ["--time", t]
    if p: args += ["--purpose", p]
    if c: args += ["--contact", c]
    if e: args += ["--contact-email", e]
    if n: args += ["--notes", n]
    run(args)

def visits_status():
    vid = prompt("Visit ID")
    run(["visits", "status", vid, prompt("New status (scheduled/completed/cancelled)")])

def visits_delete():
    run(["visits", "delete", prompt("Visit ID")])

def visits_today():
    run(["visits", "today"])

def visits_upcoming():
    args = ["visits", "upcoming"]
    d = prompt_optional("Days ahead (default: 30)")
    if d: args += ["--days", d]
    run(args)

def visits_stats():
    run(["visits", "stats"])

def hotels_search():
    run(["hotels", "search", prompt("Search text")])

def hotels_show():
    run(["hotels", "show", prompt("Hotel ID")])

def email_preview():
    tpl = prompt("Template (follow_up/thank_you/service_proposal/meeting_request/contract_renewal/custom)")
    args = ["email", "preview", tpl]
    v = prompt_optional("Visit ID")
    if v: args += ["--visit", v]
    run(args)

def email_send():
    tpl = prompt("Template")
    args = ["email", "send", tpl]
    v = prompt_optional("Visit ID")
    to = prompt_optional("Recipient email (default: visit contact)")
    if v: args += ["--visit", v]
    if to: args += ["--to", to]
    run(args)

def storage_export():
    run(["storage", "export", prompt("Backup file path")])

def storage_import():
    run(["storage", "import", prompt("Backup file path")])


# =============================================================================
# MENU LAYOUT
# =============================================================================

MENU = [
    ("VISITS", [
        ("List visits",                  visits_list),
        ("Show visit details",           visits_show),
        ("Schedule visit",               visits_schedule),
        ("Change visit status",          visits_status),
        ("Delete visit",                 visits_delete),
        ("Today's visits",               visits_today),
        ("Upcoming visits",              visits_upcoming),
        ("Visit statistics",             visits_stats),
    ]),
    ("HOTELS", [
        ("List hotels",                  lambda: run(["hotels", "list"])),
        ("Search hotels",                hotels_search),
        ("Show hotel",                   hotels_show),
    ]),
    ("EMAIL", [
        ("List templates",               lambda: run(["email", "templates"])),
        ("Preview email",                email_preview),
        ("Send email",                   email_send),
        ("Email history",                lambda: run(["email", "history"])),
    ]),
    ("STORAGE", [
        ("Storage statistics",           lambda: run(["storage", "stats"])),
        ("Run maintenance now",          lambda: run(["storage", "maintain"])),
        ("Rebuild indexes",              lambda: run(["storage", "rebuild-indexes"])),
        ("Export backup",                storage_export),
        ("Import backup",                storage_import),
    ]),
]


def print_menu():
    clear()
    print("=" * 50)
    print("   VISIT TRACKER")
    print("=" * 50)

    n = 1
    numbering = {}

    for section, commands in MENU:
        print(f"\n  {section}")
        print(f"  {'-' * len(section)}")
        for label, handler in commands:
            print(f"  {n:>2}.  {label}")
            numbering[n] = handler
            n += 1

    print("\n" + "=" * 50)
    print("   0.  Exit")
    print("=" * 50)
    return numbering


def main():
    while True:
        numbering = print_menu()

        try:
            choice = input("\n  Select a command: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\n  Goodbye!\n")
            break

        if choice == "0" or choice.lower() in ("q", "quit", "exit"):
            print("\n  Goodbye!\n")
            break

        try:
            n = int(choice)
            if n in numbering:
                clear()
                numbering[n]()
            else:
                print(f"\n  Invalid selection: {choice}")
                input("  Press Enter to continue...")
        except ValueError:
            print("\n  Please enter a number.")
            input("  Press Enter to continue...")


if __name__ == "__main__":
    main()
