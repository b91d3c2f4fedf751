# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Sequence

from amaranth import Signal, Module, Elaboratable
from amaranth.build import Platform
from amaranth.hdl import EnableInserter
from amaranth.lib import memory

from consts import IrqState, IRQ1_VECTOR, IRQ2_VECTOR, STACK_DEPTH, WIDTH
from core import MiscCore
from util import main

# Peripheral bus address split: 11-bit device number, 4-bit register.
IO_DEV_BITS = 11
IO_REG_BITS = 4


class MiscSystem(Elaboratable):
    """A core with its instruction and data storage.

    Addresses with bit 15 clear go to data storage. Addresses with bit 15
    set go out on the peripheral bus, split into a device number and a
    register within that device. A device answers a read on the clock
    after io_rd.

    Clearing ce freezes the whole system: the core, the storage read ports
    and the peripheral strobes. The interrupt line synchronizers are part of
    the core, so a request that rises and falls while ce is low is never
    seen.

    Attributes:
        ce: Clock enable.
        maint_addr: Instruction storage maintenance write address.
        maint_data: Instruction storage maintenance write data.
        maint_we: Instruction storage maintenance write enable.
        io_dev: The peripheral being addressed.
        io_reg: The register within the peripheral.
        io_wdata: Peripheral write data.
        io_rd: Peripheral read strobe.
        io_wr: Peripheral write strobe.
        io_rdata: Peripheral read data.
        irq1: Interrupt request line 1.
        irq2: Interrupt request line 2.
        irq_en: Interrupts are enabled.
        busy: The interrupt system is busy.
        irq_state: The core's interrupt controller state.
        fetch_addr: The current fetch address.
        bubble: The core's decode stage holds a bubble.
    """

    def __init__(self, program: Sequence[int] = (), data: Sequence[int] = (),
                 imem_depth: int = 256, dmem_depth: int = 256,
                 vector_1: int = IRQ1_VECTOR, vector_2: int = IRQ2_VECTOR,
                 stack_depth: int = STACK_DEPTH):
        """Constructs a system.

        Args:
            program: The initial contents of instruction storage.
            data: The initial contents of data storage.
            imem_depth: Words of instruction storage.
            dmem_depth: Words of data storage.
            vector_1: Where line 1's handler starts.
            vector_2: Where line 2's handler starts.
            stack_depth: Levels in register 14.
        """
        assert 0 < imem_depth <= 2**WIDTH
        assert 0 < dmem_depth <= 2**(WIDTH - 1)
        assert len(program) <= imem_depth
        assert len(data) <= dmem_depth

        self.ce = Signal(init=1)

        # Maintenance
        self.maint_addr = Signal(WIDTH)
        self.maint_data = Signal(WIDTH)
        self.maint_we = Signal()

        # Peripheral bus
        self.io_dev = Signal(IO_DEV_BITS)
        self.io_reg = Signal(IO_REG_BITS)
        self.io_wdata = Signal(WIDTH)
        self.io_rd = Signal()
        self.io_wr = Signal()
        self.io_rdata = Signal(WIDTH)

        # Interrupts
        self.irq1 = Signal()
        self.irq2 = Signal()
        self.irq_en = Signal(init=1)
        self.busy = Signal()

        # Debug
        self.irq_state = Signal(IrqState)
        self.fetch_addr = Signal(WIDTH)
        self.bubble = Signal()

        self.core = MiscCore(vector_1, vector_2, stack_depth)
        self.imem = memory.Memory(shape=WIDTH, depth=imem_depth, init=program)
        self.dmem = memory.Memory(shape=WIDTH, depth=dmem_depth, init=data)

        self._imem_rd = self.imem.read_port()
        self._imem_wr = self.imem.write_port()
        self._dmem_wr = self.dmem.write_port()
        self._dmem_rd = self.dmem.read_port(transparent_for=(self._dmem_wr,))

    def ports(self) -> List[Signal]:
        return [self.ce, self.maint_addr, self.maint_data, self.maint_we,
                self.io_dev, self.io_reg, self.io_wdata, self.io_rd,
                self.io_wr, self.io_rdata, self.irq1, self.irq2,
                self.irq_en, self.busy, self.fetch_addr, self.bubble,
                self.irq_state]

    def elaborate(self, _: Platform) -> Module:
        """Implements the system."""
        m = Module()

        m.submodules.core = EnableInserter(self.ce)(self.core)
        m.submodules.imem = self.imem
        m.submodules.dmem = self.dmem

        core = self.core
        imem_rd = self._imem_rd
        imem_wr = self._imem_wr
        dmem_rd = self._dmem_rd
        dmem_wr = self._dmem_wr

        # A frozen core must keep seeing the words it was last given.
        m.d.comb += [
            imem_rd.addr.eq(core.imem_addr),
            imem_rd.en.eq(self.ce),
            core.imem_data.eq(imem_rd.data),

            imem_wr.addr.eq(self.maint_addr),
            imem_wr.data.eq(self.maint_data),
            imem_wr.en.eq(self.maint_we),

            dmem_rd.addr.eq(core.dmem_raddr),
            dmem_rd.en.eq(self.ce),
            core.dmem_rdata.eq(dmem_rd.data),

            dmem_wr.addr.eq(core.dmem_waddr),
            dmem_wr.data.eq(core.dmem_wdata),
            dmem_wr.en.eq(core.dmem_we & self.ce),
        ]

        m.d.comb += [
            self.io_dev.eq(core.io_addr[IO_REG_BITS:]),
            self.io_reg.eq(core.io_addr[:IO_REG_BITS]),
            self.io_wdata.eq(core.io_wdata),
            self.io_rd.eq(core.io_rd & self.ce),
            self.io_wr.eq(core.io_wr & self.ce),
            core.io_rdata.eq(self.io_rdata),
        ]

        m.d.comb += [
            core.irq1.eq(self.irq1),
            core.irq2.eq(self.irq2),
            core.irq_en.eq(self.irq_en),
            self.busy.eq(core.busy),
            self.irq_state.eq(core.irq_state),
            self.fetch_addr.eq(core.fetch_addr),
            self.bubble.eq(core.bubble),
        ]

        return m


if __name__ == "__main__":
    main(MiscSystem)
