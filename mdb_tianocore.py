#!/usr/bin/env python3
"""Turn an OVMF boot log plus its .debug objects into mdb ::nmadd commands.

Usage: mdb-tianocore -d Build/OvmfX64/DEBUG_GCC5/X64 debug.log > syms.mdb
"""

import getopt
import os
import sys

from bootlog import read_boot_log
from debugsyms import ModuleError, emit, resolve_module

USAGE = "usage: mdb-tianocore -d <obj path> <debug output file>"


def usage():
    print(USAGE)
    sys.exit(0)


def parse_args(argv):
    """Return (obj_dir, log_path), or None when argv is unusable."""
    try:
        opts, args = getopt.gnu_getopt(argv, "d:")
    except getopt.GetoptError:
        return None

    obj_dir = None
    for o, a in opts:
        if o == "-d":
            obj_dir = a

    if obj_dir is None or not args:
        return None
    return obj_dir, args[0]


def run(obj_dir, loaded, out=None, err=None):
    """Resolve every module in `loaded`, in load address order.

    Returns the number of modules that could not be resolved.
    """
    if err is None:
        err = sys.stderr

    failed = 0
    for base, module in sorted(loaded.items()):
        try:
            symbols = resolve_module(obj_dir, module, base)
        except ModuleError as e:
            err.write(f"Error processing {module}: {e}\n")
            failed += 1
            continue
        emit(symbols, out, err)
    return failed


def main(argv=None):
    if argv is None:
        argv = sys.argv[1:]

    parsed = parse_args(argv)
    if parsed is None:
        usage()
    obj_dir, log_path = parsed

    if not os.path.isdir(obj_dir):
        usage()

    try:
        loaded = read_boot_log(log_path)
    except OSError as e:
        print(f"Error reading {log_path}: {e}", file=sys.stderr)
        sys.exit(1)

    run(obj_dir, loaded)


if __name__ == "__main__":
    main()
