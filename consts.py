# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103

from enum import IntEnum, unique

# Register value width, not counting the flag bit.
WIDTH = 16
# Register width including the flag bit, which is bit 16.
REG_WIDTH = WIDTH + 1
FLAG_BIT = WIDTH

# The all-zero word: AND r0, r0, r0.
NOP = 0x0000

# Default interrupt vectors.
IRQ1_VECTOR = 0x0010
IRQ2_VECTOR = 0x0020

STACK_DEPTH = 8
SHADOW_REGS = 8

# Cycles after reset before interrupt requests are recognized.
IRQ_SETTLE_CYCLES = 3


@unique
class Opcode(IntEnum):
    """Opcodes."""
    AND = 0x0
    NAND = 0x1
    OR = 0x2
    XOR = 0x3
    ADD = 0x4
    SUB = 0x5
    SHL = 0x6
    SHR = 0x7
    BITW = 0x8
    ADDI = 0x9    # rd += imm8
    SETHI = 0xA   # rd = imm8 << 8
    ADDZ = 0xB    # rd += s4 if ra == 0
    ADDF = 0xC    # rd += s4 if ra.flag
    ADDS = 0xD    # rd = ra + s4
    LOAD = 0xE
    STORE = 0xF


@unique
class Reg(IntEnum):
    """Register indices with non-uniform behavior."""
    ONE = 12      # Reset to 1.
    DEC = 13      # Decremented whenever read as an operand.
    STACK = 14    # Push on write, pop on read.
    PC = 15       # Reads the decode address, writes branch.


@unique
class IrqState(IntEnum):
    """Interrupt controller states."""
    IDLE = 0
    PENDING = 1
    ENTERING = 2
    ACTIVE = 3


@unique
class IrqLine(IntEnum):
    """Which request line is being serviced."""
    LINE1 = 0
    LINE2 = 1


# Opcodes whose [7:4] field is not a register.
IMM8_OPS = (Opcode.ADDI, Opcode.SETHI)

# Opcodes that read operand B as a register rather than an immediate.
REG_B_OPS = (Opcode.AND, Opcode.NAND, Opcode.OR, Opcode.XOR, Opcode.ADD,
             Opcode.SUB, Opcode.BITW, Opcode.LOAD, Opcode.STORE)
