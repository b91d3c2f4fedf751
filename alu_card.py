# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Cat, Const, Value
from amaranth.build import Platform
from amaranth.hdl import Assert

from consts import Opcode, WIDTH, REG_WIDTH, FLAG_BIT
from util import main


def sign_extend_imm4(imm4: Value) -> Value:
    """Sign-extends a 4-bit immediate to the register value width."""
    return Cat(imm4, imm4[3].replicate(WIDTH - 4))


class AluCard(Elaboratable):
    """Logic for the ALU card.

    Every operand is a full 17-bit register, value in the low 16 bits and
    flag in bit 16. The logic ops work on all 17 bits. The arithmetic ops
    work on the 16-bit values and leave the carry (or borrow) in bit 16 of
    the result, which becomes the destination's new flag.

    Attributes:
        op: The opcode to evaluate.
        a: Operand A, the register selected by bits [7:4].
        b: Operand B, the register selected by bits [3:0].
        d: The destination's current value, for the ops that add to it.
        imm8: The low byte of the instruction.
        imm4: The low nibble of the instruction.
        result: The 17-bit result.
        cond: Whether the op's condition was met. Only ADDZ and ADDF
            ever clear this. When clear, the result must not be written.
    """

    op: Signal
    a: Signal
    b: Signal
    d: Signal
    imm8: Signal
    imm4: Signal
    result: Signal
    cond: Signal

    def __init__(self):
        # Inputs
        self.op = Signal(Opcode)
        self.a = Signal(REG_WIDTH)
        self.b = Signal(REG_WIDTH)
        self.d = Signal(REG_WIDTH)
        self.imm8 = Signal(8)
        self.imm4 = Signal(4)

        # Outputs
        self.result = Signal(REG_WIDTH)
        self.cond = Signal()

    def ports(self) -> List[Signal]:
        return [self.op, self.a, self.b, self.d, self.imm8, self.imm4,
                self.result, self.cond]

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the ALU card."""
        m = Module()

        a = self.a
        b = self.b
        d = self.d
        a_val = a[:WIDTH]
        b_val = b[:WIDTH]
        d_val = d[:WIDTH]

        imm = Signal(WIDTH)
        masked = Signal(WIDTH)
        m.d.comb += [
            imm.eq(sign_extend_imm4(self.imm4)),
            masked.eq(a_val & b_val),
        ]

        m.d.comb += self.result.eq(0)
        m.d.comb += self.cond.eq(1)

        with m.Switch(self.op):
            with m.Case(Opcode.AND):
                m.d.comb += self.result.eq(a & b)

            with m.Case(Opcode.NAND):
                m.d.comb += self.result.eq(~(a & b))

            with m.Case(Opcode.OR):
                m.d.comb += self.result.eq(a | b)

            with m.Case(Opcode.XOR):
                m.d.comb += self.result.eq(a ^ b)

            with m.Case(Opcode.ADD):
                m.d.comb += self.result.eq(a_val + b_val)

            with m.Case(Opcode.SUB):
                m.d.comb += self.result.eq(a_val - b_val)

            with m.Case(Opcode.SHL):
                m.d.comb += self.result.eq(a << self.imm4)

            with m.Case(Opcode.SHR):
                # The flag is the top bit of the 17-bit quantity, so a
                # signed shift is arithmetic exactly when the flag is set.
                m.d.comb += self.result.eq(a.as_signed() >> self.imm4)

            with m.Case(Opcode.BITW):
                # Priority encoder: the last matching assignment wins, so
                # the highest set bit determines the result.
                for i in range(WIDTH):
                    with m.If(masked[i]):
                        m.d.comb += self.result.eq(i + 1)

            with m.Case(Opcode.ADDI):
                m.d.comb += self.result.eq(d_val + self.imm8)

            with m.Case(Opcode.SETHI):
                m.d.comb += self.result.eq(Cat(Const(0, 8), self.imm8))

            with m.Case(Opcode.ADDZ):
                with m.If(a_val == 0):
                    m.d.comb += self.result.eq(d_val + imm)
                with m.Else():
                    m.d.comb += self.result.eq(d)
                    m.d.comb += self.cond.eq(0)

            with m.Case(Opcode.ADDF):
                with m.If(a[FLAG_BIT]):
                    m.d.comb += self.result.eq(d_val + imm)
                with m.Else():
                    m.d.comb += self.result.eq(d)
                    m.d.comb += self.cond.eq(0)

            with m.Case(Opcode.ADDS):
                m.d.comb += self.result.eq(a_val + imm)

            # LOAD and STORE never use the result.
            with m.Default():
                m.d.comb += self.result.eq(0)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the ALU."""
        m = Module()
        m.submodules.alu = alu = AluCard()

        a_val = alu.a[:WIDTH]
        b_val = alu.b[:WIDTH]
        d_val = alu.d[:WIDTH]
        imm = sign_extend_imm4(alu.imm4)

        with m.Switch(alu.op):
            with m.Case(Opcode.AND):
                m.d.comb += Assert(alu.result == (alu.a & alu.b))

            with m.Case(Opcode.NAND):
                m.d.comb += Assert(alu.result == ~(alu.a & alu.b))

            with m.Case(Opcode.OR):
                m.d.comb += Assert(alu.result == (alu.a | alu.b))

            with m.Case(Opcode.XOR):
                m.d.comb += Assert(alu.result == (alu.a ^ alu.b))

            with m.Case(Opcode.ADD):
                m.d.comb += Assert(alu.result == (a_val + b_val))

            with m.Case(Opcode.SUB):
                m.d.comb += [
                    Assert(alu.result[:WIDTH] == (a_val - b_val)[:WIDTH]),
                    Assert(alu.result[FLAG_BIT] == (a_val < b_val)),
                ]

            with m.Case(Opcode.SHL):
                m.d.comb += Assert(alu.result ==
                                   (alu.a << alu.imm4)[:REG_WIDTH])

            with m.Case(Opcode.SHR):
                with m.If(alu.a[FLAG_BIT]):
                    m.d.comb += Assert(alu.result ==
                                       (alu.a.as_signed() >> alu.imm4)[:REG_WIDTH])
                with m.Else():
                    m.d.comb += Assert(alu.result == (alu.a >> alu.imm4))

            with m.Case(Opcode.BITW):
                with m.If((a_val & b_val) == 0):
                    m.d.comb += Assert(alu.result == 0)
                with m.Else():
                    m.d.comb += Assert(alu.result >= 1)
                    m.d.comb += Assert(alu.result <= WIDTH)
                    # The reported bit is set and nothing above it is.
                    top = (alu.result - 1)[:4]
                    m.d.comb += Assert(((a_val & b_val) >> top) == 1)

            with m.Case(Opcode.ADDI):
                m.d.comb += Assert(alu.result == (d_val + alu.imm8))

            with m.Case(Opcode.SETHI):
                m.d.comb += Assert(alu.result == (alu.imm8 << 8))

            with m.Case(Opcode.ADDZ):
                m.d.comb += Assert(alu.cond == (a_val == 0))
                with m.If(alu.cond):
                    m.d.comb += Assert(alu.result == (d_val + imm))

            with m.Case(Opcode.ADDF):
                m.d.comb += Assert(alu.cond == alu.a[FLAG_BIT])
                with m.If(alu.cond):
                    m.d.comb += Assert(alu.result == (d_val + imm))

            with m.Case(Opcode.ADDS):
                m.d.comb += Assert(alu.result == (a_val + imm))

        with m.If((alu.op != Opcode.ADDZ) & (alu.op != Opcode.ADDF)):
            m.d.comb += Assert(alu.cond)

        return m, alu.ports()


if __name__ == "__main__":
    main(AluCard)
