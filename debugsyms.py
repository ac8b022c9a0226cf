"""Resolve a module's code symbols from its .debug object.

Each resolved symbol becomes one mdb directive:

    <addr>::nmadd -f|-o -s <size> "<module>.<symbol>"
"""

import mmap
import os
import sys
from dataclasses import dataclass

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile

DEBUG_SUFFIX = ".debug"
TEXT_SECTION = ".text"
# '`' would be the usual object/function delimiter, but with no objects
# loaded mdb cannot resolve names through it.
NAME_SEPARATOR = "."


class ModuleError(Exception):
    pass


class MissingOrInvalidObject(ModuleError):
    pass


class NoCodeSection(ModuleError):
    pass


@dataclass(frozen=True)
class CodeSymbol:
    name: str
    address: int
    declared_size: int
    is_function: bool


@dataclass(frozen=True)
class ResolvedSymbol:
    address: int
    size: int
    is_function: bool
    qualified_name: str


def find_text_section(elffile):
    for index, section in enumerate(elffile.iter_sections()):
        if section.name == TEXT_SECTION:
            return index, section
    return None, None


def collect_symbols(elffile, text_index, base, end):
    """Map relocated address -> CodeSymbol for the symbols inside .text.

    Only addresses in [base, end) are kept. Keys are unique, so a later
    symbol at an already seen address replaces the earlier one.
    """
    symbols = {}
    symtab = elffile.get_section_by_name(".symtab")
    if symtab is None:
        return symbols

    for sym in symtab.iter_symbols():
        if sym["st_shndx"] != text_index:
            continue

        is_function = sym["st_info"]["type"] == "STT_FUNC"
        # Functions implemented in assembly may not be properly typed
        if not is_function and sym["st_info"]["bind"] != "STB_GLOBAL":
            continue
        if not sym.name:
            continue

        address = base + sym["st_value"]
        if address >= end:
            continue
        symbols[address] = CodeSymbol(
            name=sym.name,
            address=address,
            declared_size=sym["st_size"],
            is_function=is_function,
        )
    return symbols


def read_code_symbols(path, base):
    """Return (symbols sorted by address, end of .text) for one object."""
    if not os.path.isfile(path):
        raise MissingOrInvalidObject(f"{path}: not a regular file")

    try:
        with open(path, "rb") as f, \
                mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as image:
            elffile = ELFFile(image)
            text_index, text = find_text_section(elffile)
            if text is None:
                raise NoCodeSection(f"no {TEXT_SECTION} section found")
            end = base + text["sh_size"]
            symbols = collect_symbols(elffile, text_index, base, end)
    except (OSError, ValueError, ELFError) as e:
        # ValueError: mmap refuses empty files
        raise MissingOrInvalidObject(f"{path}: {e}") from e

    return [symbols[addr] for addr in sorted(symbols)], end


def infer_sizes(symbols, end, module):
    """Fill in missing sizes by stretching each symbol to its successor.

    `symbols` must be sorted by address. The last symbol stretches to
    `end`, the end of the module's .text.
    """
    resolved = []
    for i, sym in enumerate(symbols):
        size = sym.declared_size
        if size == 0:
            if i + 1 < len(symbols):
                size = symbols[i + 1].address - sym.address
            else:
                size = end - sym.address
        resolved.append(ResolvedSymbol(
            address=sym.address,
            size=size,
            is_function=sym.is_function,
            qualified_name=f"{module}{NAME_SEPARATOR}{sym.name}",
        ))
    return resolved


def resolve_module(obj_dir, module, base):
    path = os.path.join(obj_dir, module + DEBUG_SUFFIX)
    symbols, end = read_code_symbols(path, base)
    return infer_sizes(symbols, end, module)


def format_nmadd(sym):
    kind = "f" if sym.is_function else "o"
    return f'{sym.address:x}::nmadd -{kind} -s {sym.size:x} "{sym.qualified_name}"'


def emit(symbols, out=None, err=None):
    """Write one directive per symbol, skipping lines `out` cannot encode."""
    if out is None:
        out = sys.stdout
    if err is None:
        err = sys.stderr
    written = 0
    for sym in symbols:
        line = format_nmadd(sym)
        try:
            out.write(line + "\n")
        except UnicodeEncodeError as e:
            err.write(f"Skipping {sym.qualified_name!a}: {e}\n")
            continue
        written += 1
    return written
