"""
MISC-16 assembler
=================
Translates assembly text into a list of 16-bit instruction words.

Supports:
  - Labels (terminated with ':'), on their own line or before a statement
  - All 16 opcodes, plus NOP, RET and the two-word LI rd, value
  - Registers r0-r15, with pc for r15 and sp for r14
  - Immediates in decimal or 0x hex, or a label
  - Comments (';' or '#' to end of line)
  - .org and .word directives

A label used as the signed 4-bit immediate of ADDZ, ADDF or ADDS becomes
an offset from the instruction's own address, which is what r15 reads as,
so

    addz r15, r3, loop

branches to loop when r3 is zero.

Usage:
  from asm import assemble
  words = assemble(source_text)
"""
import re
from typing import Dict, List, Optional, Tuple

from consts import Opcode, Reg, NOP, WIDTH


class AsmError(ValueError):
    """Raised for source the assembler can't make sense of."""

    def __init__(self, msg: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            msg = f"Line {line}: {msg}"
        super().__init__(msg)


# Operand formats:
#   r   register
#   u   unsigned 4-bit immediate
#   s   signed 4-bit immediate (labels are relative)
#   b   8-bit immediate
FORMATS: Dict[Opcode, str] = {
    Opcode.AND: "rrr",
    Opcode.NAND: "rrr",
    Opcode.OR: "rrr",
    Opcode.XOR: "rrr",
    Opcode.ADD: "rrr",
    Opcode.SUB: "rrr",
    Opcode.SHL: "rru",
    Opcode.SHR: "rru",
    Opcode.BITW: "rrr",
    Opcode.ADDI: "rb",
    Opcode.SETHI: "rb",
    Opcode.ADDZ: "rrs",
    Opcode.ADDF: "rrs",
    Opcode.ADDS: "rrs",
    Opcode.LOAD: "rrr",
    Opcode.STORE: "rrr",
}

REG_ALIASES = {"pc": Reg.PC, "sp": Reg.STACK}

_LABEL = re.compile(r"^([A-Za-z_.][\w.]*)\s*:")
_NAME = re.compile(r"^[A-Za-z_.][\w.]*$")


def _check(value: int, lo: int, hi: int, what: str):
    if not lo <= value <= hi:
        raise AsmError(f"{what} out of range [{lo}, {hi}]: {value}")


def encode(op: Opcode, rd: int, ra: int = 0, rb: int = 0) -> int:
    """Encodes an instruction from its four 4-bit fields."""
    _check(op, 0, 15, "opcode")
    _check(rd, 0, 15, "rd")
    _check(ra, 0, 15, "ra")
    _check(rb, 0, 15, "rb")
    return (op << 12) | (rd << 8) | (ra << 4) | rb


def encode_imm4(op: Opcode, rd: int, ra: int, imm4: int) -> int:
    """Encodes an instruction with a 4-bit immediate.

    The immediate is signed for ADDZ, ADDF and ADDS, unsigned otherwise.
    """
    if FORMATS[op][2] == "s":
        _check(imm4, -8, 7, "signed immediate")
    else:
        _check(imm4, 0, 15, "immediate")
    return encode(op, rd, ra, imm4 & 0xF)


def encode_imm8(op: Opcode, rd: int, imm8: int) -> int:
    """Encodes ADDI or SETHI."""
    _check(imm8, 0, 255, "immediate")
    return encode(op, rd, imm8 >> 4, imm8 & 0xF)


def li(rd: int, value: int) -> List[int]:
    """The two words that load a 16-bit constant into rd."""
    if rd == Reg.PC:
        raise AsmError("LI can't target r15")
    value &= 0xFFFF
    return [encode_imm8(Opcode.SETHI, rd, value >> 8),
            encode_imm8(Opcode.ADDI, rd, value & 0xFF)]


# Return from interrupt: any program write of 0 to r15.
RET = encode_imm8(Opcode.SETHI, Reg.PC, 0)


def _parse_reg(tok: str, line: int) -> int:
    tok = tok.strip().lower()
    if tok in REG_ALIASES:
        return REG_ALIASES[tok]
    if tok.startswith("r") and tok[1:].isdigit():
        n = int(tok[1:])
        if 0 <= n <= 15:
            return n
    raise AsmError(f"Invalid register: {tok!r}", line)


def _parse_imm(tok: str, line: int) -> int:
    try:
        return int(tok, 0)
    except ValueError:
        raise AsmError(f"Invalid immediate: {tok!r}", line) from None


def _resolve(tok: str, labels: Dict[str, int], line: int,
             pc: Optional[int] = None) -> int:
    """Resolves an immediate or a label. With pc, labels are relative."""
    tok = tok.strip()
    if _NAME.match(tok):
        if tok not in labels:
            raise AsmError(f"Undefined label: {tok}", line)
        value = labels[tok]
        return value if pc is None else value - pc
    return _parse_imm(tok, line)


def _split_ops(rest: str) -> List[str]:
    return [s.strip() for s in rest.split(",") if s.strip()]


def _strip(raw: str) -> str:
    for c in ";#":
        raw = raw.split(c, 1)[0]
    return raw.strip()


def _size(mnem: str, rest: str, line: int) -> int:
    if mnem == ".word":
        return len(_split_ops(rest))
    if mnem == "li":
        return 2
    if mnem in ("nop", "ret") or mnem.upper() in Opcode.__members__:
        return 1
    raise AsmError(f"Unknown mnemonic: {mnem}", line)


def _emit(mnem: str, ops: List[str], pc: int, labels: Dict[str, int],
          line: int) -> List[int]:
    """Encodes one statement."""
    if mnem == ".word":
        words = []
        for tok in ops:
            value = _resolve(tok, labels, line)
            if not -(1 << (WIDTH - 1)) <= value < 1 << WIDTH:
                raise AsmError(f"Word out of range: {value}", line)
            words.append(value & 0xFFFF)
        return words

    if mnem in ("nop", "ret"):
        if ops:
            raise AsmError(f"{mnem.upper()} takes no operands", line)
        return [NOP if mnem == "nop" else RET]

    if mnem == "li":
        if len(ops) != 2:
            raise AsmError("LI takes 2 operands", line)
        rd = _parse_reg(ops[0], line)
        value = _resolve(ops[1], labels, line)
        try:
            return li(rd, value)
        except AsmError as e:
            raise AsmError(str(e), line) from None

    op = Opcode[mnem.upper()]
    fmt = FORMATS[op]
    if len(ops) != len(fmt):
        raise AsmError(f"{op.name} takes {len(fmt)} operands, got {len(ops)}", line)

    rd = _parse_reg(ops[0], line)
    try:
        if fmt == "rb":
            return [encode_imm8(op, rd, _resolve(ops[1], labels, line))]
        ra = _parse_reg(ops[1], line)
        if fmt == "rrr":
            return [encode(op, rd, ra, _parse_reg(ops[2], line))]
        if fmt == "rru":
            return [encode_imm4(op, rd, ra, _resolve(ops[2], labels, line))]
        return [encode_imm4(op, rd, ra, _resolve(ops[2], labels, line, pc))]
    except AsmError as e:
        if e.line is not None:
            raise
        raise AsmError(str(e), line) from None


def assemble(source: str) -> List[int]:
    """
    Two-pass assembler.
    Pass 1: collect labels, compute statement sizes.
    Pass 2: emit words with resolved labels.
    Gaps left by .org are filled with NOP.
    """
    statements: List[Tuple[int, str, str]] = []
    labels: Dict[str, int] = {}
    pc = 0

    # ---- Pass 1 ----
    for line, raw in enumerate(source.split("\n"), 1):
        text = _strip(raw)
        while True:
            match = _LABEL.match(text)
            if match is None:
                break
            label = match.group(1)
            if label in labels:
                raise AsmError(f"Duplicate label: {label}", line)
            labels[label] = pc
            text = text[match.end():].strip()
        if not text:
            continue

        parts = text.split(None, 1)
        mnem = parts[0].lower()
        rest = parts[1] if len(parts) > 1 else ""

        if mnem == ".org":
            target = _parse_imm(rest.strip(), line)
            if target < pc:
                raise AsmError(f".org {target:#x} is behind {pc:#x}", line)
            pc = target
        else:
            pc += _size(mnem, rest, line)
        statements.append((line, mnem, rest))

    if pc > 1 << WIDTH:
        raise AsmError(f"Program doesn't fit: {pc} words")

    # ---- Pass 2 ----
    words: List[int] = []
    for line, mnem, rest in statements:
        if mnem == ".org":
            words.extend([NOP] * (_parse_imm(rest.strip(), line) - len(words)))
            continue
        words.extend(_emit(mnem, _split_ops(rest), len(words), labels, line))

    return words
