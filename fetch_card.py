# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
# Disable protected access warnings
# pylint: disable=W0212
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Mux, unsigned
from amaranth.build import Platform
from amaranth.hdl import Assert
from amaranth.lib import data

from consts import NOP, WIDTH
from util import main


class DecodeLatch(data.Struct):
    """The fetched word as the decode stage sees it."""
    instr: unsigned(WIDTH)
    addr: unsigned(WIDTH)
    valid: unsigned(1)


class FetchCard(Elaboratable):
    """Logic for the fetch card.

    Instruction storage answers one clock after it is given an address.
    The card drives that address and latches the answer, together with
    the address it came from, into the decode latch.

    When a branch is detected in decode, the next two words to reach the
    decode latch are replaced with bubbles, which commit nothing. During
    the second of those, writeback asserts override with the branch
    target, and the target is sent to instruction storage right away, so
    the target is the next word decoded after the bubbles.

    Attributes:
        branch_now: A branch was detected in decode this cycle.
        override: Fetch from target instead of the next sequential address.
        target: The branch target.
        imem_addr: The address being sent to instruction storage.
        imem_data: The word at last cycle's imem_addr.
        decode: The decode latch.
        bubble: The decode latch holds a bubble.
    """

    branch_now: Signal
    override: Signal
    target: Signal
    imem_addr: Signal
    imem_data: Signal
    bubble: Signal

    def __init__(self):
        # Controls
        self.branch_now = Signal()
        self.override = Signal()
        self.target = Signal(WIDTH)

        # Instruction storage
        self.imem_addr = Signal(WIDTH)
        self.imem_data = Signal(WIDTH)

        # Outputs
        self.decode = Signal(DecodeLatch)
        self.bubble = Signal()

        # Internals
        self._pc = Signal(WIDTH)
        self._fetch_addr = Signal(WIDTH)
        self._fetch_valid = Signal()
        self._branch_d1 = Signal()

    def ports(self) -> List[Signal]:
        return [self.branch_now, self.override, self.target,
                self.imem_addr, self.imem_data, self.bubble,
                self.decode.as_value()]

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the fetch card."""
        m = Module()

        m.d.comb += self.imem_addr.eq(Mux(self.override, self.target, self._pc))

        m.d.sync += [
            self._pc.eq(self.imem_addr + 1),
            self._fetch_addr.eq(self.imem_addr),
            self._fetch_valid.eq(1),
            self._branch_d1.eq(self.branch_now),
        ]

        # Nothing fetched yet after reset counts as a bubble too.
        kill = self.branch_now | self._branch_d1 | ~self._fetch_valid

        m.d.sync += [
            self.decode.instr.eq(Mux(kill, NOP, self.imem_data)),
            self.decode.addr.eq(self._fetch_addr),
            self.decode.valid.eq(~kill),
        ]

        m.d.comb += self.bubble.eq(~self.decode.valid)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the fetch card."""
        m = Module()
        m.submodules.fetch = fetch = FetchCard()

        past_valid = Signal()
        past2_valid = Signal()
        past_branch = Signal()
        past2_branch = Signal()
        past_imem_addr = Signal(WIDTH)
        past2_imem_addr = Signal(WIDTH)
        past_imem_data = Signal(WIDTH)

        m.d.sync += [
            past_valid.eq(1),
            past2_valid.eq(past_valid),
            past_branch.eq(fetch.branch_now),
            past2_branch.eq(past_branch),
            past_imem_addr.eq(fetch.imem_addr),
            past2_imem_addr.eq(past_imem_addr),
            past_imem_data.eq(fetch.imem_data),
        ]

        with m.If(~fetch.override):
            m.d.comb += Assert(fetch.imem_addr == fetch._pc)
        with m.Else():
            m.d.comb += Assert(fetch.imem_addr == fetch.target)

        with m.If(past_valid):
            m.d.comb += Assert(fetch._pc == (past_imem_addr + 1)[:WIDTH])

        with m.If(past2_valid):
            # The latched address is the one the word was fetched from.
            m.d.comb += Assert(fetch.decode.addr == past2_imem_addr)

            with m.If(past_branch | past2_branch):
                m.d.comb += Assert(fetch.bubble)
                m.d.comb += Assert(fetch.decode.instr == NOP)
            with m.Else():
                m.d.comb += Assert(~fetch.bubble)
                m.d.comb += Assert(fetch.decode.instr == past_imem_data)

        with m.If(~past_valid):
            m.d.comb += Assert(fetch.bubble)

        return m, fetch.ports()


if __name__ == "__main__":
    main(FetchCard)
