# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
# Disable protected access warnings
# pylint: disable=W0212
"""
This module provides a synchronizing rising-edge detector for
asynchronous request lines.
"""
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable
from amaranth.build import Platform
from amaranth.hdl import Assert
from amaranth.lib.cdc import FFSynchronizer

from util import main


class EdgeSync(Elaboratable):
    """Turns a rising edge on an asynchronous line into a one-clock pulse.

    Attributes:
        i: The asynchronous input.
        pulse: High for exactly one clock, stages clocks after i rises.
            As long as i stays high for at least one clock, the edge is
            not missed.
    """

    i: Signal
    pulse: Signal

    def __init__(self, stages: int = 2):
        """Constructs an edge synchronizer.

        Args:
            stages: The number of synchronizing flops.
        """
        assert stages >= 2
        self.i = Signal()
        self.pulse = Signal()

        self.stages = stages

        self._synced = Signal()
        self._prev = Signal()

    def ports(self) -> List[Signal]:
        return [self.i, self.pulse]

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the edge synchronizer."""
        m = Module()

        m.submodules.sync = FFSynchronizer(self.i, self._synced, stages=self.stages)

        m.d.sync += self._prev.eq(self._synced)
        m.d.comb += self.pulse.eq(self._synced & ~self._prev)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the edge synchronizer."""
        m = Module()
        m.submodules.edge = edge = EdgeSync()

        past_pulse = Signal()
        m.d.sync += past_pulse.eq(edge.pulse)

        # Never two pulses in a row.
        with m.If(past_pulse):
            m.d.comb += Assert(~edge.pulse)

        with m.If(edge.pulse):
            m.d.comb += Assert(edge._synced)

        return m, edge.ports()


if __name__ == "__main__":
    main(EdgeSync)
