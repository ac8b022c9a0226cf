"""Follow module loads through a TianoCore/OVMF boot log.

The firmware's DEBUG output announces every image it relocates:

    Loading driver at 0x0007E123000 EntryPoint=0x0007E124020 DxeCore.efi

and retracts the ones that fail to start:

    Error: Image at 0007E123000 start failed: Unsupported

Scanning the log leaves a table of load address -> module base name for
every image still resident.
"""

import string

MODULE_SUFFIX = ".efi"
FAILURE_PREFIX = "Error: Image at "


def parse_hex(text):
    # Bare digits only; int() would also take "0x", "_", signs and spaces.
    if not text or any(c not in string.hexdigits for c in text):
        return None
    value = int(text, 16)
    if value >= 1 << 64:
        return None
    return value


def scan_boot_log(lines):
    """Return {load address: module name} for the images left loaded."""
    loaded = {}

    for line in lines:
        fields = line.split()

        # "Loading <something> at 0x<address> EntryPoint=0x<entry> <file>.efi"
        if len(fields) > 5 and fields[0] == "Loading" and fields[2] == "at":
            addr, filename = fields[3], fields[5]
            if addr.startswith("0x") and filename.endswith(MODULE_SUFFIX):
                while addr.startswith("0x"):
                    addr = addr[2:]
                while filename.endswith(MODULE_SUFFIX):
                    filename = filename[:-len(MODULE_SUFFIX)]
                base = parse_hex(addr)
                if base is not None:
                    loaded[base] = filename
            continue

        # "Error: Image at <address> start failed: ..."
        if line.startswith(FAILURE_PREFIX) and len(fields) > 3:
            base = parse_hex(fields[3])
            if base is not None:
                loaded.pop(base, None)

    return loaded


def read_boot_log(path):
    with open(path, "r", errors="replace") as f:
        return scan_boot_log(f)
