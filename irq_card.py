# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Mux
from amaranth.build import Platform
from amaranth.hdl import Assert

from consts import IrqLine, IrqState, IRQ1_VECTOR, IRQ2_VECTOR, IRQ_SETTLE_CYCLES, WIDTH
from edge_sync import EdgeSync
from util import main


class IrqCard(Elaboratable):
    """Logic for the interrupt card.

    Each request line goes through an edge synchronizer, and each pulse
    sets a sticky latch for that line. Line 1 has priority: if both lines
    pulse on the same clock, only line 1's latch is set.

    An interrupt is taken only when the pipeline is safe: no branch being
    detected in decode, no bubble in decode, and no override in fetch.
    Taking it makes decode see a branch to the line's vector, and the
    sequence after that is:

        take      The instruction in decode completes normally.
        save      First bubble. Registers 0-7 go to the shadow bank and
                  the discarded instruction's address is kept as the
                  return address.
        clear     Second bubble. Registers 0-7 are zeroed.

    While ACTIVE, a program write of 0 to register 15 returns: the branch
    goes to the return address instead, and on the next clock registers
    0-7 are restored with forwarding disabled.

    Attributes:
        irq1: Request line 1, high priority.
        irq2: Request line 2, low priority.
        enable: Interrupts are enabled.
        branch_now: decode detected a program branch.
        bubble: decode holds a bubble.
        override: fetch is being overridden by a branch.
        wb_irq_entry: writeback holds the instruction an interrupt was
            taken on.
        wb_zero_pc: writeback is a program write of 0 to register 15.
        decode_addr: The address in the decode latch.
        take: Take the pending interrupt now.
        exit: Return from the active interrupt now.
        vector: The vector of the line being serviced.
        ret_addr: The saved return address.
        save: Copy registers 0-7 to the shadow bank.
        clear: Zero registers 0-7.
        restore: Restore registers 0-7 from the shadow bank.
        fwd_disable: Turn off forwarding.
        busy: An interrupt is latched, pending or being serviced.
        state: The interrupt state.
        which: The line being serviced.
    """

    def __init__(self, vector_1: int = IRQ1_VECTOR, vector_2: int = IRQ2_VECTOR,
                 settle: int = IRQ_SETTLE_CYCLES, stages: int = 2):
        """Constructs an interrupt card.

        Args:
            vector_1: Where line 1's handler starts.
            vector_2: Where line 2's handler starts.
            settle: Clocks after reset before requests are recognized.
            stages: Synchronizer flops per request line.
        """
        assert 0 <= vector_1 < 2**WIDTH
        assert 0 <= vector_2 < 2**WIDTH
        assert settle >= 0

        self.vector_1 = vector_1
        self.vector_2 = vector_2
        self.settle = settle

        # Request lines
        self.irq1 = Signal()
        self.irq2 = Signal()
        self.enable = Signal(init=1)

        # Pipeline observation
        self.branch_now = Signal()
        self.bubble = Signal()
        self.override = Signal()
        self.wb_irq_entry = Signal()
        self.wb_zero_pc = Signal()
        self.decode_addr = Signal(WIDTH)

        # Controls
        self.take = Signal()
        self.exit = Signal()
        self.vector = Signal(WIDTH)
        self.ret_addr = Signal(WIDTH)
        self.save = Signal()
        self.clear = Signal()
        self.restore = Signal()
        self.fwd_disable = Signal()

        # Status
        self.busy = Signal()
        self.safe = Signal()
        self.state = Signal(IrqState)
        self.which = Signal(IrqLine)
        self.latch1 = Signal()
        self.latch2 = Signal()

        # Internals
        self._edge1 = EdgeSync(stages)
        self._edge2 = EdgeSync(stages)
        self._settle_count = Signal(range(settle + 1))

    def ports(self) -> List[Signal]:
        return [self.irq1, self.irq2, self.enable, self.branch_now,
                self.bubble, self.override, self.wb_irq_entry,
                self.wb_zero_pc, self.decode_addr, self.take, self.exit,
                self.vector, self.ret_addr, self.save, self.clear,
                self.restore, self.fwd_disable, self.busy]

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the interrupt card."""
        m = Module()

        m.submodules.edge1 = edge1 = self._edge1
        m.submodules.edge2 = edge2 = self._edge2

        m.d.comb += [
            edge1.i.eq(self.irq1),
            edge2.i.eq(self.irq2),
        ]

        # Give the synchronizers time to settle after reset.
        ready = Signal()
        m.d.comb += ready.eq(self._settle_count == self.settle)
        with m.If(~ready):
            m.d.sync += self._settle_count.eq(self._settle_count + 1)

        pulse1 = Signal()
        pulse2 = Signal()
        m.d.comb += [
            pulse1.eq(ready & edge1.pulse),
            pulse2.eq(ready & edge2.pulse & ~edge1.pulse),
        ]

        latched = self.latch1 | self.latch2

        m.d.comb += [
            self.safe.eq(~self.branch_now & ~self.bubble & ~self.override),
            self.take.eq(self.enable & self.safe & latched &
                         (self.state == IrqState.PENDING)),
            self.exit.eq(self.wb_zero_pc & (self.state == IrqState.ACTIVE)),
            self.vector.eq(Mux(self.which == IrqLine.LINE2,
                               self.vector_2, self.vector_1)),
            self.busy.eq(latched | (self.state != IrqState.IDLE)),
        ]

        with m.Switch(self.state):
            with m.Case(IrqState.IDLE):
                with m.If(latched):
                    m.d.sync += self.state.eq(IrqState.PENDING)

            with m.Case(IrqState.PENDING):
                with m.If(self.take):
                    m.d.sync += self.state.eq(IrqState.ENTERING)
                    with m.If(self.latch1):
                        m.d.sync += self.which.eq(IrqLine.LINE1)
                        m.d.sync += self.latch1.eq(0)
                    with m.Else():
                        m.d.sync += self.which.eq(IrqLine.LINE2)
                        m.d.sync += self.latch2.eq(0)

            with m.Case(IrqState.ENTERING):
                with m.If(self.wb_irq_entry):
                    m.d.sync += self.state.eq(IrqState.ACTIVE)

            with m.Case(IrqState.ACTIVE):
                with m.If(self.exit):
                    m.d.sync += self.state.eq(IrqState.IDLE)

        # A new request on the line being taken stays latched.
        with m.If(pulse1):
            m.d.sync += self.latch1.eq(1)
        with m.If(pulse2):
            m.d.sync += self.latch2.eq(1)

        m.d.sync += [
            self.save.eq(self.take),
            self.clear.eq(self.save),
            self.restore.eq(self.exit),
        ]
        m.d.comb += self.fwd_disable.eq(self.restore)

        with m.If(self.save):
            m.d.sync += self.ret_addr.eq(self.decode_addr)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the interrupt card."""
        m = Module()
        m.submodules.irq = irq = IrqCard()

        past_valid = Signal()
        past_state = Signal(IrqState)
        past_take = Signal()
        past_latch1 = Signal()
        past_exit = Signal()

        m.d.sync += [
            past_valid.eq(1),
            past_state.eq(irq.state),
            past_take.eq(irq.take),
            past_latch1.eq(irq.latch1),
            past_exit.eq(irq.exit),
        ]

        with m.If(irq.take):
            m.d.comb += [
                Assert(irq.state == IrqState.PENDING),
                Assert(irq.enable),
                Assert(~irq.branch_now & ~irq.bubble & ~irq.override),
                Assert(irq.latch1 | irq.latch2),
            ]

        with m.If(irq.exit):
            m.d.comb += Assert(irq.state == IrqState.ACTIVE)

        with m.If(past_valid):
            m.d.comb += Assert(irq.save == past_take)
            m.d.comb += Assert(irq.restore == past_exit)

            with m.If(past_take):
                m.d.comb += Assert(irq.state == IrqState.ENTERING)
                with m.If(past_latch1):
                    m.d.comb += Assert(irq.which == IrqLine.LINE1)
                with m.Else():
                    m.d.comb += Assert(irq.which == IrqLine.LINE2)

            # Only ever one step around the cycle.
            with m.If(irq.state == IrqState.ACTIVE):
                m.d.comb += Assert((past_state == IrqState.ACTIVE) |
                                   (past_state == IrqState.ENTERING))
            with m.If(irq.state == IrqState.ENTERING):
                m.d.comb += Assert((past_state == IrqState.ENTERING) |
                                   (past_state == IrqState.PENDING))

        return m, irq.ports()


if __name__ == "__main__":
    main(IrqCard)
