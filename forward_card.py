# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Array, Cat
from amaranth.build import Platform
from amaranth.hdl import Assert

from consts import Reg, WIDTH, REG_WIDTH, FLAG_BIT
from util import main


class ForwardCard(Elaboratable):
    """Logic for the forwarding card.

    Resolves the three register reads of the instruction in decode (A, B,
    and the destination's current value D) against the instruction in
    writeback, which commits at the end of this cycle. In priority order:

    1. Register 15 always reads as pc.
    2. Register 14, while writeback pops without pushing, reads as the
       top the stack will have after that pop.
    3. The register writeback is writing reads as the value being written.
    4. Anything else reads from the register and stack cards.

    2 and 3 are turned off by disable. A decrement of register 13 that
    isn't part of a write is never forwarded, so the read sees the value
    before the decrement.

    Attributes:
        idx_a, idx_b, idx_d: The register numbers to read.
        val_a, val_b, val_d: The resolved 17-bit values.
        file: The stored values of registers 0-14.
        pc: The value register 15 reads as.
        next_top: The stack card's post-pop top.
        stack_flag: The stack card's flag.
        wb_we: Writeback writes register wb_dest.
        wb_dest: Writeback's destination.
        wb_value: The value writeback writes, before any register 13
            decrement or stack flag handling.
        wb_dec: Writeback decrements register 13.
        wb_push: Writeback pushes register 14.
        wb_pop: Writeback pops register 14.
        disable: Read only from the register and stack cards.
    """

    def __init__(self):
        # Operand ports
        self.idx_a = Signal(4)
        self.idx_b = Signal(4)
        self.idx_d = Signal(4)
        self.val_a = Signal(REG_WIDTH)
        self.val_b = Signal(REG_WIDTH)
        self.val_d = Signal(REG_WIDTH)

        # Stored state
        self.file = [Signal(REG_WIDTH, name=f"file{i}") for i in range(Reg.PC)]
        self.pc = Signal(REG_WIDTH)
        self.next_top = Signal(REG_WIDTH)
        self.stack_flag = Signal()

        # Writeback
        self.wb_we = Signal()
        self.wb_dest = Signal(4)
        self.wb_value = Signal(REG_WIDTH)
        self.wb_dec = Signal()
        self.wb_push = Signal()
        self.wb_pop = Signal()

        self.disable = Signal()

        # The value register wb_dest will actually hold after writeback.
        self.fwd_value = Signal(REG_WIDTH)

    def ports(self) -> List[Signal]:
        return ([self.idx_a, self.idx_b, self.idx_d,
                 self.val_a, self.val_b, self.val_d] + self.file +
                [self.pc, self.next_top, self.stack_flag,
                 self.wb_we, self.wb_dest, self.wb_value, self.wb_dec,
                 self.wb_push, self.wb_pop, self.disable])

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the forwarding card."""
        m = Module()

        wb_value = self.wb_value

        m.d.comb += self.fwd_value.eq(wb_value)
        with m.If((self.wb_dest == Reg.DEC) & self.wb_dec):
            m.d.comb += self.fwd_value.eq(Cat((wb_value[:WIDTH] - 1)[:WIDTH],
                                              wb_value[FLAG_BIT]))
        with m.If((self.wb_dest == Reg.STACK) & self.wb_pop):
            # Modify-top leaves the flag alone.
            m.d.comb += self.fwd_value.eq(Cat(wb_value[:WIDTH], self.stack_flag))

        pop_only = self.wb_pop & ~self.wb_push
        stored = Array(self.file + [self.pc])

        for idx, val in ((self.idx_a, self.val_a),
                         (self.idx_b, self.val_b),
                         (self.idx_d, self.val_d)):
            # Lowest priority first: the last assignment wins.
            m.d.comb += val.eq(stored[idx])

            with m.If(~self.disable):
                with m.If(self.wb_we & (idx == self.wb_dest)):
                    m.d.comb += val.eq(self.fwd_value)
                with m.If(pop_only & (idx == Reg.STACK)):
                    m.d.comb += val.eq(self.next_top)

            with m.If(idx == Reg.PC):
                m.d.comb += val.eq(self.pc)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the forwarding card."""
        m = Module()
        m.submodules.fwd = fwd = ForwardCard()

        stored = Array(fwd.file + [fwd.pc])
        idx = fwd.idx_a
        val = fwd.val_a

        with m.If(idx == Reg.PC):
            m.d.comb += Assert(val == fwd.pc)

        with m.Elif(fwd.disable):
            m.d.comb += Assert(val == stored[idx])

        with m.Elif(fwd.wb_pop & ~fwd.wb_push & (idx == Reg.STACK)):
            m.d.comb += Assert(val == fwd.next_top)

        with m.Elif(fwd.wb_we & (idx == fwd.wb_dest)):
            with m.If((idx == Reg.DEC) & fwd.wb_dec):
                m.d.comb += Assert(val[:WIDTH] == (fwd.wb_value[:WIDTH] - 1)[:WIDTH])
            with m.Elif((idx == Reg.STACK) & fwd.wb_pop):
                m.d.comb += Assert(val == Cat(fwd.wb_value[:WIDTH], fwd.stack_flag))
            with m.Else():
                m.d.comb += Assert(val == fwd.wb_value)

        with m.Else():
            m.d.comb += Assert(val == stored[idx])

        # All three ports resolve the same way.
        with m.If((fwd.idx_a == fwd.idx_b) & (fwd.idx_b == fwd.idx_d)):
            m.d.comb += Assert(fwd.val_a == fwd.val_b)
            m.d.comb += Assert(fwd.val_b == fwd.val_d)

        return m, fwd.ports()


if __name__ == "__main__":
    main(ForwardCard)
