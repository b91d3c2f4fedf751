# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Cat, Mux, Value, unsigned
from amaranth.build import Platform
from amaranth.hdl import Assert
from amaranth.lib import data

from alu_card import AluCard
from consts import IrqState, Opcode, Reg, IMM8_OPS, REG_B_OPS, STACK_DEPTH
from consts import IRQ1_VECTOR, IRQ2_VECTOR, WIDTH, REG_WIDTH, FLAG_BIT
from fetch_card import FetchCard
from forward_card import ForwardCard
from irq_card import IrqCard
from reg_card import RegCard
from stack_card import StackCard
from util import main


class WritebackLatch(data.Struct):
    """Everything decode/execute hands to writeback, replaced every clock."""
    result: unsigned(REG_WIDTH)
    dest: unsigned(4)
    we: unsigned(1)
    mem_addr: unsigned(WIDTH)
    load: unsigned(1)
    store: unsigned(1)
    branch: unsigned(1)
    dec: unsigned(1)
    push: unsigned(1)
    pop: unsigned(1)
    irq_entry: unsigned(1)


class MiscCore(Elaboratable):
    """The MISC-16 core.

    Three stages: fetch (the fetch card), decode/execute, and writeback.
    Decode/execute reads its operands through the forwarding card, runs
    the ALU, computes the memory address and fills the writeback latch.
    Writeback commits to the register and stack cards, finishes loads,
    and turns writes of register 15 into branches.

    Attributes:
        imem_addr: Address to instruction storage.
        imem_data: The word at last cycle's imem_addr.
        dmem_raddr: Data storage read address, from execute.
        dmem_rdata: The word at last cycle's dmem_raddr.
        dmem_waddr: Data storage write address, from writeback.
        dmem_wdata: Data storage write data.
        dmem_we: Data storage write enable.
        io_addr: Peripheral bus address (low 15 bits), from execute.
        io_wdata: Peripheral bus write data.
        io_rd: Peripheral bus read request.
        io_wr: Peripheral bus write request.
        io_rdata: Peripheral bus read data, one clock after io_rd.
        irq1: Interrupt request line 1 (high priority).
        irq2: Interrupt request line 2 (low priority).
        irq_en: Interrupts are enabled.
        busy: The interrupt system is busy.
        irq_state: The interrupt controller state, for display.
        fetch_addr: The current fetch address, for display.
        bubble: Decode holds a bubble this cycle.
    """

    def __init__(self, vector_1: int = IRQ1_VECTOR, vector_2: int = IRQ2_VECTOR,
                 stack_depth: int = STACK_DEPTH):
        # Instruction storage
        self.imem_addr = Signal(WIDTH)
        self.imem_data = Signal(WIDTH)

        # Data storage
        self.dmem_raddr = Signal(WIDTH - 1)
        self.dmem_rdata = Signal(WIDTH)
        self.dmem_waddr = Signal(WIDTH - 1)
        self.dmem_wdata = Signal(WIDTH)
        self.dmem_we = Signal()

        # Peripheral bus
        self.io_addr = Signal(WIDTH - 1)
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

        # Cards
        self.alu = AluCard()
        self.regs = RegCard()
        self.stack = StackCard(stack_depth)
        self.fwd = ForwardCard()
        self.fetch = FetchCard()
        self.irq = IrqCard(vector_1, vector_2)

        # Pipeline state
        self.wb = Signal(WritebackLatch)
        self.pc_flag = Signal()

        # Decoded fields of the instruction in decode
        self.op = Signal(Opcode)
        self.rd = Signal(4)
        self.ra = Signal(4)
        self.rb = Signal(4)

        # The value writeback commits, after load data is selected.
        self.wb_value = Signal(REG_WIDTH)

    def ports(self) -> List[Signal]:
        return [self.imem_addr, self.imem_data,
                self.dmem_raddr, self.dmem_rdata, self.dmem_waddr,
                self.dmem_wdata, self.dmem_we,
                self.io_addr, self.io_wdata, self.io_rd, self.io_wr,
                self.io_rdata,
                self.irq1, self.irq2, self.irq_en, self.busy,
                self.fetch_addr, self.bubble, self.irq_state]

    def reg_value(self, idx: int) -> Value:
        """The stored value of a register, for observation.

        Register 15 reads as it would in decode.
        """
        if idx < Reg.STACK:
            return self.regs.regs[idx]
        if idx == Reg.STACK:
            return self.stack.top
        return Cat(self.fetch.decode.addr, self.pc_flag)

    def elaborate(self, _: Platform) -> Module:
        """Implements the core."""
        m = Module()

        m.submodules.alu = alu = self.alu
        m.submodules.regs = regs = self.regs
        m.submodules.stack = stack = self.stack
        m.submodules.fwd = fwd = self.fwd
        m.submodules.fetch = fetch = self.fetch
        m.submodules.irq = irq = self.irq

        wb = self.wb
        decode = fetch.decode

        # Fetch
        m.d.comb += [
            self.imem_addr.eq(fetch.imem_addr),
            fetch.imem_data.eq(self.imem_data),
            self.fetch_addr.eq(fetch.imem_addr),
            self.bubble.eq(fetch.bubble),
        ]

        # Decode
        instr = decode.instr
        op = self.op
        rd = self.rd
        ra = self.ra
        rb = self.rb
        m.d.comb += [
            op.eq(instr[12:16]),
            rd.eq(instr[8:12]),
            ra.eq(instr[4:8]),
            rb.eq(instr[0:4]),
        ]

        # Which fields are operand reads, for register 13's decrement and
        # register 14's pop. A destination that is only added to is peeked.
        uses_a = Signal()
        uses_b = Signal()
        uses_d = Signal()
        m.d.comb += [
            uses_a.eq(1),
            uses_b.eq(0),
            uses_d.eq(op == Opcode.STORE),
        ]
        with m.Switch(op):
            with m.Case(*IMM8_OPS):
                m.d.comb += uses_a.eq(0)
        with m.Switch(op):
            with m.Case(*REG_B_OPS):
                m.d.comb += uses_b.eq(1)

        def reads(idx: int) -> Value:
            return ((uses_a & (ra == idx)) |
                    (uses_b & (rb == idx)) |
                    (uses_d & (rd == idx)))

        # Operand reads
        m.d.comb += [
            fwd.idx_a.eq(ra),
            fwd.idx_b.eq(rb),
            fwd.idx_d.eq(rd),
            fwd.file[Reg.STACK].eq(stack.top),
            fwd.pc.eq(Cat(decode.addr, self.pc_flag)),
            fwd.next_top.eq(stack.next_top),
            fwd.stack_flag.eq(stack.flag),
        ]
        m.d.comb += [f.eq(r) for f, r in zip(fwd.file, regs.regs)]

        # Execute
        m.d.comb += [
            alu.op.eq(op),
            alu.a.eq(fwd.val_a),
            alu.b.eq(fwd.val_b),
            alu.d.eq(fwd.val_d),
            alu.imm8.eq(instr[0:8]),
            alu.imm4.eq(instr[0:4]),
        ]

        valid = decode.valid
        is_load = Signal()
        is_store = Signal()
        we = Signal()
        branch_prog = Signal()
        branch_now = Signal()
        mem_addr = Signal(WIDTH)
        m.d.comb += [
            is_load.eq(valid & (op == Opcode.LOAD)),
            is_store.eq(valid & (op == Opcode.STORE)),
            we.eq(valid & (op != Opcode.STORE) & alu.cond),
            branch_prog.eq(we & (rd == Reg.PC)),
            branch_now.eq(branch_prog | irq.take),
            mem_addr.eq(fwd.val_a[:WIDTH] + fwd.val_b[:WIDTH]),
        ]

        # The top address bit picks the peripheral bus over data storage.
        io_sel = mem_addr[WIDTH - 1]
        m.d.comb += [
            self.dmem_raddr.eq(mem_addr[:WIDTH - 1]),
            self.io_addr.eq(mem_addr[:WIDTH - 1]),
            self.io_wdata.eq(fwd.val_d[:WIDTH]),
            self.io_rd.eq(is_load & io_sel),
            self.io_wr.eq(is_store & io_sel),
        ]

        # Interrupts
        m.d.comb += [
            irq.irq1.eq(self.irq1),
            irq.irq2.eq(self.irq2),
            irq.enable.eq(self.irq_en),
            irq.branch_now.eq(branch_prog),
            irq.bubble.eq(fetch.bubble),
            irq.override.eq(wb.branch),
            irq.wb_irq_entry.eq(wb.irq_entry),
            irq.decode_addr.eq(decode.addr),
            self.busy.eq(irq.busy),
            self.irq_state.eq(irq.state),
            fetch.branch_now.eq(branch_now),
        ]

        m.d.sync += [
            # Stores carry their data where the result would go.
            wb.result.eq(Mux(is_store, fwd.val_d, alu.result)),
            wb.dest.eq(rd),
            wb.we.eq(we),
            wb.mem_addr.eq(mem_addr),
            wb.load.eq(is_load),
            wb.store.eq(is_store),
            wb.branch.eq(branch_now),
            wb.dec.eq(valid & reads(Reg.DEC)),
            wb.push.eq(we & (rd == Reg.STACK)),
            wb.pop.eq(valid & reads(Reg.STACK)),
            wb.irq_entry.eq(irq.take),
        ]

        # Writeback
        wb_value = self.wb_value
        load_data = Mux(wb.mem_addr[WIDTH - 1], self.io_rdata, self.dmem_rdata)
        m.d.comb += wb_value.eq(Mux(wb.load, load_data, wb.result))

        m.d.comb += [
            regs.wr_en.eq(wb.we & (wb.dest < Reg.STACK)),
            regs.wr_idx.eq(wb.dest),
            regs.wr_data.eq(wb_value),
            regs.dec.eq(wb.dec),
            regs.save.eq(irq.save),
            regs.clear.eq(irq.clear),
            regs.restore.eq(irq.restore),

            stack.push.eq(wb.push),
            stack.pop.eq(wb.pop),
            stack.data_in.eq(wb_value),

            fwd.wb_we.eq(wb.we),
            fwd.wb_dest.eq(wb.dest),
            fwd.wb_value.eq(wb_value),
            fwd.wb_dec.eq(wb.dec),
            fwd.wb_push.eq(wb.push),
            fwd.wb_pop.eq(wb.pop),
            fwd.disable.eq(irq.fwd_disable),
        ]

        m.d.comb += [
            self.dmem_waddr.eq(wb.mem_addr[:WIDTH - 1]),
            self.dmem_wdata.eq(wb.result[:WIDTH]),
            self.dmem_we.eq(wb.store & ~wb.mem_addr[WIDTH - 1]),
        ]

        # Branches
        branch_wb = Signal()
        target = Signal(WIDTH)
        m.d.comb += [
            branch_wb.eq(wb.branch & ~wb.irq_entry),
            irq.wb_zero_pc.eq(branch_wb & (wb_value[:WIDTH] == 0)),
            target.eq(wb_value[:WIDTH]),
        ]
        with m.If(wb.irq_entry):
            m.d.comb += target.eq(irq.vector)
        with m.Elif(irq.exit):
            m.d.comb += target.eq(irq.ret_addr)

        m.d.comb += [
            fetch.override.eq(wb.branch),
            fetch.target.eq(target),
        ]

        with m.If(branch_wb):
            m.d.sync += self.pc_flag.eq(Mux(wb.load, 0, wb_value[FLAG_BIT]))

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the pipeline control of the core."""
        m = Module()
        m.submodules.core = core = MiscCore()

        past_valid = Signal()
        past2_valid = Signal()
        past_branch = Signal()
        past2_branch = Signal()
        past_take = Signal()

        m.d.sync += [
            past_valid.eq(1),
            past2_valid.eq(past_valid),
            past_branch.eq(core.fetch.branch_now),
            past2_branch.eq(past_branch),
            past_take.eq(core.irq.take),
        ]

        # Interrupts are never taken with branch activity in flight.
        with m.If(core.irq.take):
            m.d.comb += [
                Assert(~core.bubble),
                Assert(~core.wb.branch),
            ]

        with m.If(past2_valid):
            # Any branch is followed by exactly two bubbles.
            with m.If(past_branch | past2_branch):
                m.d.comb += Assert(core.bubble)

        with m.If(past_valid):
            with m.If(past_branch):
                m.d.comb += Assert(core.wb.branch)
            with m.If(past_take):
                m.d.comb += Assert(core.wb.irq_entry)

        # Bubbles commit nothing.
        with m.If(core.bubble):
            m.d.comb += Assert(~core.fetch.branch_now)

        return m, core.ports()


if __name__ == "__main__":
    main(MiscCore)
