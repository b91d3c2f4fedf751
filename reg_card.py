# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Cat, Mux
from amaranth.build import Platform
from amaranth.hdl import Assert

from consts import Reg, SHADOW_REGS, WIDTH, REG_WIDTH, FLAG_BIT
from util import main


class RegCard(Elaboratable):
    """Logic for the register card.

    Attributes:
        wr_en: Write wr_data to register wr_idx on the next clock.
        wr_idx: The register to write. Only 0-13 live here; the stack
            card holds 14 and 15 is not stored at all.
        wr_data: The 17-bit value to write.
        dec: Decrement register 13 on the next clock. If register 13 is
            also being written, the written value is decremented instead.
        save: Copy registers 0-7 into the shadow bank. A register that is
            being written on the same clock is saved with its new value.
        clear: Zero registers 0-7.
        restore: Copy the shadow bank back into registers 0-7.
        regs: The stored registers, 0-13.
        shadow: The shadow bank.

    clear and restore take priority over an ordinary write to the same
    register. Register 12 resets to 1, everything else to 0.
    """

    wr_en: Signal
    wr_idx: Signal
    wr_data: Signal
    dec: Signal
    save: Signal
    clear: Signal
    restore: Signal

    def __init__(self):
        """Constructs a register card."""
        # Controls
        self.wr_en = Signal()
        self.wr_idx = Signal(4)
        self.wr_data = Signal(REG_WIDTH)
        self.dec = Signal()
        self.save = Signal()
        self.clear = Signal()
        self.restore = Signal()

        self.regs = [Signal(REG_WIDTH, name=f"r{i}", init=1 if i == Reg.ONE else 0)
                     for i in range(Reg.STACK)]
        self.shadow = [Signal(REG_WIDTH, name=f"shadow{i}")
                       for i in range(SHADOW_REGS)]

    def ports(self) -> List[Signal]:
        return [self.wr_en, self.wr_idx, self.wr_data, self.dec, self.save,
                self.clear, self.restore] + self.regs

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the register card."""
        m = Module()

        wr_data = self.wr_data
        wr_data_dec = Signal(REG_WIDTH)
        m.d.comb += wr_data_dec.eq(Cat((wr_data[:WIDTH] - 1)[:WIDTH],
                                       wr_data[FLAG_BIT]))

        for i, reg in enumerate(self.regs):
            hit = self.wr_en & (self.wr_idx == i)

            if i == Reg.DEC:
                with m.If(hit):
                    m.d.sync += reg.eq(Mux(self.dec, wr_data_dec, wr_data))
                with m.Elif(self.dec):
                    m.d.sync += reg[:WIDTH].eq(reg[:WIDTH] - 1)
            else:
                with m.If(hit):
                    m.d.sync += reg.eq(wr_data)

        for i in range(SHADOW_REGS):
            reg = self.regs[i]
            hit = self.wr_en & (self.wr_idx == i)

            with m.If(self.save):
                m.d.sync += self.shadow[i].eq(Mux(hit, wr_data, reg))

            with m.If(self.clear):
                m.d.sync += reg.eq(0)
            with m.Elif(self.restore):
                m.d.sync += reg.eq(self.shadow[i])

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the register card."""
        m = Module()
        m.submodules.regs = regs = RegCard()

        past_valid = Signal()
        past_wr_en = Signal()
        past_wr_idx = Signal(4)
        past_wr_data = Signal(REG_WIDTH)
        past_dec = Signal()
        past_save = Signal()
        past_clear = Signal()
        past_restore = Signal()
        past_regs = [Signal(REG_WIDTH, name=f"past_r{i}") for i in range(len(regs.regs))]
        past_shadow = [Signal(REG_WIDTH, name=f"past_shadow{i}") for i in range(SHADOW_REGS)]

        m.d.sync += [
            past_valid.eq(1),
            past_wr_en.eq(regs.wr_en),
            past_wr_idx.eq(regs.wr_idx),
            past_wr_data.eq(regs.wr_data),
            past_dec.eq(regs.dec),
            past_save.eq(regs.save),
            past_clear.eq(regs.clear),
            past_restore.eq(regs.restore),
        ]
        m.d.sync += [p.eq(r) for p, r in zip(past_regs, regs.regs)]
        m.d.sync += [p.eq(s) for p, s in zip(past_shadow, regs.shadow)]

        with m.If(past_valid):
            for i in range(SHADOW_REGS):
                with m.If(past_clear):
                    m.d.comb += Assert(regs.regs[i] == 0)
                with m.Elif(past_restore):
                    m.d.comb += Assert(regs.regs[i] == past_shadow[i])

                with m.If(past_save):
                    with m.If(past_wr_en & (past_wr_idx == i)):
                        m.d.comb += Assert(regs.shadow[i] == past_wr_data)
                    with m.Else():
                        m.d.comb += Assert(regs.shadow[i] == past_regs[i])
                with m.Else():
                    m.d.comb += Assert(regs.shadow[i] == past_shadow[i])

            r13 = regs.regs[Reg.DEC]
            past_r13 = past_regs[Reg.DEC]
            with m.If(past_wr_en & (past_wr_idx == Reg.DEC)):
                with m.If(past_dec):
                    m.d.comb += Assert(r13[:WIDTH] == (past_wr_data[:WIDTH] - 1)[:WIDTH])
                with m.Else():
                    m.d.comb += Assert(r13 == past_wr_data)
                m.d.comb += Assert(r13[FLAG_BIT] == past_wr_data[FLAG_BIT])
            with m.Elif(past_dec):
                m.d.comb += Assert(r13[:WIDTH] == (past_r13[:WIDTH] - 1)[:WIDTH])
                m.d.comb += Assert(r13[FLAG_BIT] == past_r13[FLAG_BIT])
            with m.Else():
                m.d.comb += Assert(r13 == past_r13)

        return m, regs.ports()


if __name__ == "__main__":
    main(RegCard)
