import unittest

from amaranth import Array, Elaboratable, Module, Signal
from amaranth.sim import Simulator

from asm import assemble
from consts import IrqState, Reg
from system import MiscSystem


HALT = "halt: adds pc, pc, halt"

HANDLERS = """
.org 0x10
        li r1, 0x7777       ; trash a shadowed register
        addi r3, 5
        addi r11, 1         ; r11 counts line 1
        ret
.org 0x20
        li r2, 0x4444
        addi r10, 1         ; r10 counts line 2
        ret
"""

LOOP = """
        li r1, 0x1234
loop:   addi r2, 1
        adds pc, pc, loop
""" + HANDLERS


class ScratchDevice(Elaboratable):
    """Sixteen plain registers at one peripheral device number."""

    def __init__(self, system, dev):
        self.system = system
        self.dev = dev
        self.regs = [Signal(16, name=f"scratch{i}") for i in range(16)]

    def elaborate(self, platform):
        m = Module()
        m.submodules.system = system = self.system

        regs = Array(self.regs)
        with m.If(system.io_dev == self.dev):
            with m.If(system.io_wr):
                m.d.sync += regs[system.io_reg].eq(system.io_wdata)
            with m.If(system.io_rd):
                m.d.sync += system.io_rdata.eq(regs[system.io_reg])

        return m


class CoreTestCase(unittest.TestCase):
    def simulate(self, dut, testbench):
        sim = Simulator(dut)
        sim.add_clock(1e-6)
        sim.add_testbench(testbench)
        sim.run()

    def registers(self, ctx, system):
        return [ctx.get(system.core.reg_value(i)) for i in range(16)]

    def run_program(self, source, cycles=60, **kwargs):
        system = MiscSystem(assemble(source), **kwargs)
        result = []

        async def testbench(ctx):
            await ctx.tick().repeat(cycles)
            result.extend(self.registers(ctx, system))

        self.simulate(system, testbench)
        return result

    async def step(self, ctx, system, seen):
        """Records the address in decode, or None for a bubble, then ticks."""
        fetch = system.core.fetch
        seen.append(ctx.get(fetch.decode.addr) if ctx.get(fetch.decode.valid) else None)
        await ctx.tick()

    def test_reset_state(self):
        system = MiscSystem()

        async def testbench(ctx):
            regs = self.registers(ctx, system)
            self.assertEqual(regs[Reg.ONE], 1)
            self.assertEqual([r for i, r in enumerate(regs[:Reg.STACK + 1]) if i != Reg.ONE],
                             [0] * Reg.STACK)
            self.assertEqual(ctx.get(system.fetch_addr), 0)
            self.assertTrue(ctx.get(system.bubble))
            self.assertFalse(ctx.get(system.busy))

        self.simulate(system, testbench)

    def test_alu_and_forwarding(self):
        regs = self.run_program(f"""
            sethi r1, 0x12
            addi r1, 0x34       ; reads r1 straight from writeback
            add r2, r1, r12
            sethi r3, 0xFF
            addi r3, 0xFF
            add r4, r3, r12     ; carry out
            addf r5, r4, 5
            addz r6, r4, 7
            addz r7, r3, 7      ; not taken
            sub r8, r0, r12
            bitw r9, r3, r2
            shr r10, r8, 4
            shl r11, r12, 15
            {HALT}
        """)
        self.assertEqual(regs[1], 0x1234)
        self.assertEqual(regs[2], 0x1235)
        self.assertEqual(regs[3], 0xFFFF)
        self.assertEqual(regs[4], 0x10000)
        self.assertEqual(regs[5], 5)
        self.assertEqual(regs[6], 7)
        self.assertEqual(regs[7], 0)
        self.assertEqual(regs[8], 0x1FFFF)
        self.assertEqual(regs[9], 13)
        self.assertEqual(regs[10], 0x1FFFF)
        self.assertEqual(regs[11], 0x8000)

    def test_branch_bubbles(self):
        system = MiscSystem(assemble(f"""
            addi r1, 1
            adds pc, pc, skip
            addi r2, 1
            addi r2, 2
    skip:   addi r3, 1
            {HALT}
        """))
        seen = []

        async def testbench(ctx):
            for _ in range(14):
                await self.step(ctx, system, seen)
            regs = self.registers(ctx, system)
            self.assertEqual(regs[1:4], [1, 0, 1])

        self.simulate(system, testbench)
        self.assertEqual(seen, [None, None, 0, 1, None, None, 4, 5,
                                None, None, 5, None, None, 5])

    def test_counted_loop(self):
        regs = self.run_program(f"""
            li r1, 5
    loop:   addi r2, 3
            adds r1, r1, -1
            addz pc, r1, done
            adds pc, pc, loop
    done:   addi r3, 1
            {HALT}
        """, cycles=80)
        # Adding -1 carries out, so the flag is set.
        self.assertEqual(regs[1], 0x10000)
        self.assertEqual(regs[2], 15)
        self.assertEqual(regs[3], 1)

    def test_pc_reads_and_flag(self):
        regs = self.run_program(f"""
            sethi r1, 0xFF
            addi r1, 0xFF
            adds r2, r12, 6
            add pc, r1, r2      ; 0xFFFF + 7 branches to 6 with the flag set
            addi r4, 1
            addi r4, 1
            or r3, pc, r0
            adds r5, pc, 0
            {HALT}
        """)
        self.assertEqual(regs[3], 0x10006)
        self.assertEqual(regs[4], 0)
        self.assertEqual(regs[5], 7)

    def test_auto_decrement(self):
        regs = self.run_program(f"""
            li r13, 5
            add r1, r13, r0
            add r2, r13, r0     ; the pending decrement isn't forwarded
            nop
            add r3, r13, r0
            nop
            adds r13, r13, 4    ; decrement folded into the write
            {HALT}
        """)
        self.assertEqual(regs[1], 5)
        self.assertEqual(regs[2], 5)
        self.assertEqual(regs[3], 3)
        self.assertEqual(regs[Reg.DEC], 5)

    def test_stack(self):
        regs = self.run_program(f"""
            adds sp, r12, 0
            adds sp, r12, 1
            adds sp, r12, 2
            add r1, sp, r0
            add r2, sp, r0
            add r3, sp, r0
            add r4, sp, r0      ; empty
            {HALT}
        """)
        self.assertEqual(regs[1:5], [3, 2, 1, 0])
        self.assertEqual(regs[Reg.STACK], 0)

    def test_stack_modify_top(self):
        regs = self.run_program(f"""
            adds sp, r12, 0
            adds sp, r12, 1
            adds sp, sp, 5
            add r1, sp, r0
            add r2, sp, r0
            add r3, sp, r0
            {HALT}
        """)
        self.assertEqual(regs[1:4], [7, 1, 0])

    def test_stack_eviction(self):
        pushes = "\n".join(f"adds sp, r12, {k}" for k in range(8))
        pops = "\n".join(f"add r{i}, sp, r0" for i in range(1, 10))
        regs = self.run_program(f"""
            li r11, 9
            {pushes}
            adds sp, r11, 0
            {pops}
            {HALT}
        """, cycles=80)
        self.assertEqual(regs[1:10], [9, 8, 7, 6, 5, 4, 3, 2, 0])

    def test_load_store(self):
        data = [0] * 0x41 + [0x1111]
        regs = self.run_program(f"""
            li r1, 0x0040
            li r2, 0xBEEF
            store r2, r1, r0
            load r3, r1, r0     ; right behind the store
            add r4, r3, r12     ; right behind the load
            load r5, r1, r12
            li r13, 0x0777
            store r13, r1, r12
            load r6, r1, r12
            {HALT}
        """, cycles=80, data=data)
        self.assertEqual(regs[3], 0xBEEF)
        self.assertEqual(regs[4], 0xBEF0)
        self.assertEqual(regs[5], 0x1111)
        self.assertEqual(regs[6], 0x0777)
        self.assertEqual(regs[Reg.DEC], 0x0776)

    def test_peripheral_bus(self):
        system = MiscSystem(assemble(f"""
            li r1, 0x8013       ; device 1, register 3
            li r2, 0x55AA
            store r2, r1, r0
            load r3, r1, r0
            add r4, r3, r12
            {HALT}
        """))
        dut = ScratchDevice(system, dev=1)

        async def testbench(ctx):
            await ctx.tick().repeat(40)
            self.assertEqual(ctx.get(dut.regs[3]), 0x55AA)
            regs = self.registers(ctx, system)
            self.assertEqual(regs[3], 0x55AA)
            self.assertEqual(regs[4], 0x55AB)

        self.simulate(dut, testbench)

    def test_clock_enable(self):
        source = f"""
            li r1, 0x0040
            li r2, 0x1234
            store r2, r1, r0
            load r3, r1, r0
            adds sp, r3, 1
            add r4, sp, r12
            {HALT}
        """
        expected = self.run_program(source)

        system = MiscSystem(assemble(source))

        async def testbench(ctx):
            for cycle in range(120):
                stalled = cycle % 3 != 0
                ctx.set(system.ce, not stalled)
                before = ctx.get(system.fetch_addr)
                await ctx.tick()
                if stalled:
                    self.assertEqual(ctx.get(system.fetch_addr), before)
            self.assertEqual(self.registers(ctx, system)[:15], expected[:15])

        self.simulate(system, testbench)
        self.assertEqual(expected[4], 0x1236)

    def test_maintenance_write(self):
        system = MiscSystem()
        program = assemble(f"""
            li r1, 0x00AB
            {HALT}
        """)

        async def testbench(ctx):
            ctx.set(system.ce, 0)
            for addr, word in enumerate(program):
                ctx.set(system.maint_addr, addr)
                ctx.set(system.maint_data, word)
                ctx.set(system.maint_we, 1)
                await ctx.tick()
            ctx.set(system.maint_we, 0)
            ctx.set(system.ce, 1)
            await ctx.tick().repeat(20)
            self.assertEqual(self.registers(ctx, system)[1], 0x00AB)

        self.simulate(system, testbench)

    async def request(self, ctx, line):
        ctx.set(line, 1)
        await ctx.tick().repeat(2)
        ctx.set(line, 0)

    def test_interrupt(self):
        system = MiscSystem(assemble(LOOP))
        seen = []
        counts = {}

        async def testbench(ctx):
            for _ in range(20):
                await self.step(ctx, system, seen)
            counts["before"] = self.registers(ctx, system)[2]
            self.assertFalse(ctx.get(system.busy))

            ctx.set(system.irq1, 1)
            for _ in range(2):
                await self.step(ctx, system, seen)
            ctx.set(system.irq1, 0)
            await self.step(ctx, system, seen)
            self.assertTrue(ctx.get(system.busy))

            for _ in range(60):
                await self.step(ctx, system, seen)
            self.assertFalse(ctx.get(system.busy))
            self.assertEqual(ctx.get(system.irq_state), IrqState.IDLE)
            regs = self.registers(ctx, system)
            counts["after"] = regs[2]
            self.assertEqual(regs[1], 0x1234)
            self.assertEqual(regs[3], 0)
            self.assertEqual(regs[11], 1)
            self.assertEqual(regs[10], 0)

        self.simulate(system, testbench)

        self.assertGreater(counts["after"], counts["before"])

        # Two bubbles into the handler, two back out, and the loop resumes
        # at the word after the one the interrupt was taken on.
        entry = seen.index(0x10)
        self.assertEqual(seen[entry - 3:entry], [2, None, None])
        exit_ = seen.index(0x14)
        self.assertEqual(seen[exit_:exit_ + 4], [0x14, None, None, 3])

    def test_interrupt_priority(self):
        system = MiscSystem(assemble(LOOP))

        async def testbench(ctx):
            await ctx.tick().repeat(20)
            ctx.set(system.irq1, 1)
            ctx.set(system.irq2, 1)
            await ctx.tick().repeat(2)
            ctx.set(system.irq1, 0)
            ctx.set(system.irq2, 0)
            await ctx.tick().repeat(80)
            regs = self.registers(ctx, system)
            # Line 2's simultaneous request is dropped.
            self.assertEqual(regs[11], 1)
            self.assertEqual(regs[10], 0)
            self.assertFalse(ctx.get(system.busy))

        self.simulate(system, testbench)

    def test_line2_while_line1_active(self):
        system = MiscSystem(assemble(LOOP))
        seen = []

        async def testbench(ctx):
            await ctx.tick().repeat(20)
            await self.request(ctx, system.irq1)
            while ctx.get(system.irq_state) != IrqState.ACTIVE:
                await self.step(ctx, system, seen)
            await self.request(ctx, system.irq2)
            for _ in range(80):
                await self.step(ctx, system, seen)
            regs = self.registers(ctx, system)
            self.assertEqual(regs[11], 1)
            self.assertEqual(regs[10], 1)
            self.assertEqual(regs[1], 0x1234)
            self.assertFalse(ctx.get(system.busy))

        self.simulate(system, testbench)
        # Line 2 waits for line 1's handler to return.
        self.assertLess(seen.index(0x14), seen.index(0x20))

    def test_interrupts_disabled(self):
        system = MiscSystem(assemble(LOOP))

        async def testbench(ctx):
            ctx.set(system.irq_en, 0)
            await ctx.tick().repeat(20)
            await self.request(ctx, system.irq2)
            await ctx.tick().repeat(40)
            self.assertEqual(self.registers(ctx, system)[10], 0)
            self.assertTrue(ctx.get(system.busy))

            ctx.set(system.irq_en, 1)
            await ctx.tick().repeat(40)
            self.assertEqual(self.registers(ctx, system)[10], 1)
            self.assertFalse(ctx.get(system.busy))

        self.simulate(system, testbench)

    def test_interrupt_preserves_context(self):
        count = 120
        body = "\n".join(["adds r1, r1, 1"] * count)
        system = MiscSystem(assemble(f"""
                    li r2, 0x30
                    adds pc, r2, 0
            .org 0x10
                    li r1, 0x7777
                    li r5, 0x5555
                    ret
            .org 0x30
                    {body}
                    {HALT}
        """))
        seen = []

        async def testbench(ctx):
            for _ in range(40):
                await self.step(ctx, system, seen)
            ctx.set(system.irq1, 1)
            for _ in range(2):
                await self.step(ctx, system, seen)
            ctx.set(system.irq1, 0)
            for _ in range(180):
                await self.step(ctx, system, seen)
            regs = self.registers(ctx, system)
            # Every increment lands once, including the one in writeback
            # when the handler was entered.
            self.assertEqual(regs[1], count)
            self.assertEqual(regs[2], 0x30)
            self.assertEqual(regs[5], 0)
            self.assertEqual(ctx.get(system.irq_state), IrqState.IDLE)

        self.simulate(system, testbench)

        entry = seen.index(0x10)
        taken = seen[entry - 3]
        self.assertIn(taken, range(0x30, 0x30 + count))
        self.assertEqual(seen[entry - 2:entry], [None, None])
        exit_ = seen.index(0x14)
        self.assertEqual(seen[exit_:exit_ + 4], [0x14, None, None, taken + 1])
        # The body runs straight through, each word exactly once.
        body_seen = [a for a in seen if a is not None and 0x30 <= a < 0x30 + count]
        self.assertEqual(body_seen, list(range(0x30, 0x30 + count)))

    def test_request_while_clock_disabled(self):
        system = MiscSystem(assemble(LOOP))

        async def testbench(ctx):
            await ctx.tick().repeat(20)
            ctx.set(system.ce, 0)
            await self.request(ctx, system.irq1)
            await ctx.tick().repeat(4)
            ctx.set(system.ce, 1)
            await ctx.tick().repeat(40)
            # The synchronizers were frozen too, so the pulse was missed.
            self.assertEqual(self.registers(ctx, system)[11], 0)
            self.assertFalse(ctx.get(system.busy))
            self.assertEqual(ctx.get(system.irq_state), IrqState.IDLE)

        self.simulate(system, testbench)
