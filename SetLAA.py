#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Command-line and drag-and-drop front end for the Large Address-Aware flag.

    setlaa <application> [0|1]

Dropping an executable onto the script passes its path as the only argument,
which sets the flag. A copy of the untouched file is kept as <file>.original
(app.exe.original).
"""

import argparse
import logging
import os
import shutil
import sys

from LargeAddressAware import (
    LargeAddressAwareError,
    apply_flag,
    backup_path_for,
    is_large_address_aware,
    normalize_executable_path,
)

logger = logging.getLogger(__name__)

MISSING_TARGET = "Missing target application file name."
SYNTAX = "Syntax: setlaa <application> [0|1]  (0 clears the flag, anything else sets it)"
FILE_NOT_FOUND = "File not found: {}"
ALREADY_SET = "The Large Address-Aware flag is already set."
ALREADY_CLEARED = "The Large Address-Aware flag is already cleared."
FLAG_SET = "The Large Address-Aware flag has been set."
FLAG_CLEARED = "The Large Address-Aware flag has been cleared."
STATE_SET = "{}: Large Address-Aware"
STATE_CLEARED = "{}: not Large Address-Aware"


def describe_result(state, changed):
    if changed:
        return FLAG_SET if state else FLAG_CLEARED
    return ALREADY_SET if state else ALREADY_CLEARED


def create_backup(path):
    """Copy path to <file>.original, replacing an older backup"""
    backup_path = backup_path_for(path)
    if os.path.exists(backup_path):
        os.remove(backup_path)
    shutil.copy2(path, backup_path)
    logger.info("Backup written to %s", backup_path)
    return backup_path


def update(path, state, backup=True):
    path = normalize_executable_path(path)
    if backup:
        create_backup(path)
    return apply_flag(path, state)


def query(path):
    with open(normalize_executable_path(path), 'rb') as f:
        return is_large_address_aware(f)


def run_gui():
    """Pick an executable and the wanted state with tkinter dialogs"""
    import tkinter as tk
    from tkinter import filedialog, messagebox

    root = tk.Tk()
    root.withdraw()
    try:
        filepath = filedialog.askopenfilename(
            title="Select Application",
            filetypes=[("Executables", "*.exe"), ("All files", "*.*")])
        if not filepath:
            return 0

        state = messagebox.askyesnocancel(
            "Large Address-Aware",
            f"Set the Large Address-Aware flag of {os.path.basename(filepath)}?\n\n"
            "Yes sets the flag, No clears it.")
        if state is None:  # Cancel
            return 0

        try:
            changed = update(filepath, state)
        except (LargeAddressAwareError, OSError) as e:
            messagebox.showerror("Error", f"Could not update file:\n{e}")
            return 1
        messagebox.showinfo("Large Address-Aware", describe_result(state, changed))
        return 0
    finally:
        root.destroy()


def build_parser():
    p = argparse.ArgumentParser(
        prog='setlaa',
        description="Get or set the Large Address-Aware flag of a Windows executable.")
    p.add_argument('application', nargs='?',
                   help="target executable ('.exe' is appended when there is no extension)")
    p.add_argument('state', nargs='?', default='1',
                   help="0 to clear the flag, anything else to set it (default: set)")
    p.add_argument('--query', action='store_true', help="only report the current state")
    p.add_argument('--no-backup', action='store_true', help="do not write <file>.original")
    p.add_argument('--gui', action='store_true', help="choose the file with a dialog")
    p.add_argument('-v', '--verbose', action='store_true', help="debug logging")
    return p


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format='%(levelname)s %(name)s: %(message)s')

    if args.gui:
        return run_gui()

    if not args.application:
        print(MISSING_TARGET)
        print(SYNTAX)
        return 2

    try:
        path = normalize_executable_path(args.application)
        if not os.path.isfile(path):
            print(FILE_NOT_FOUND.format(path))
            return 1

        if args.query:
            laa = query(path)
            print((STATE_SET if laa else STATE_CLEARED).format(path))
            return 0

        state = args.state != '0'
        changed = update(path, state, backup=not args.no_backup)
    except (LargeAddressAwareError, OSError) as e:
        print(f"setlaa: {e}", file=sys.stderr)
        return 1

    print(describe_result(state, changed))
    return 0


if __name__ == "__main__":
    sys.exit(main())
