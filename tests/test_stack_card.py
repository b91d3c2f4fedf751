import unittest

from amaranth.sim import Simulator

from stack_card import StackCard


class StackCardTestCase(unittest.TestCase):
    def run_scenario(self, dut, testbench):
        sim = Simulator(dut)
        sim.add_clock(1e-6)
        sim.add_testbench(testbench)
        sim.run()

    async def push(self, ctx, dut, value):
        ctx.set(dut.push, 1)
        ctx.set(dut.data_in, value)
        await ctx.tick()
        ctx.set(dut.push, 0)

    async def pop(self, ctx, dut):
        value = ctx.get(dut.top)
        ctx.set(dut.pop, 1)
        await ctx.tick()
        ctx.set(dut.pop, 0)
        return value

    def test_lifo(self):
        dut = StackCard()

        async def testbench(ctx):
            for value in (1, 2, 3):
                await self.push(ctx, dut, value)
            self.assertEqual(ctx.get(dut.next_top), 2)
            self.assertEqual([await self.pop(ctx, dut) for _ in range(3)], [3, 2, 1])
            # Empty levels read as zero.
            self.assertEqual(await self.pop(ctx, dut), 0)

        self.run_scenario(dut, testbench)

    def test_eviction(self):
        dut = StackCard()

        async def testbench(ctx):
            for value in range(1, 10):
                await self.push(ctx, dut, value)
            popped = [await self.pop(ctx, dut) for _ in range(9)]
            self.assertEqual(popped, [9, 8, 7, 6, 5, 4, 3, 2, 0])

        self.run_scenario(dut, testbench)

    def test_modify_top(self):
        dut = StackCard()

        async def testbench(ctx):
            await self.push(ctx, dut, 0x10001)
            await self.push(ctx, dut, 0x0002)
            self.assertEqual(ctx.get(dut.flag), 0)

            ctx.set(dut.push, 1)
            ctx.set(dut.pop, 1)
            ctx.set(dut.data_in, 0x1ABCD)
            await ctx.tick()
            ctx.set(dut.push, 0)
            ctx.set(dut.pop, 0)

            # Same depth, new top, flag untouched.
            self.assertEqual(ctx.get(dut.top), 0xABCD)
            self.assertEqual(ctx.get(dut.levels[1]), 0x0001)
            self.assertEqual(ctx.get(dut.levels[2]), 0)

        self.run_scenario(dut, testbench)

    def test_flag_follows_push_only(self):
        dut = StackCard()

        async def testbench(ctx):
            await self.push(ctx, dut, 0x0005)
            await self.push(ctx, dut, 0x10006)
            self.assertEqual(ctx.get(dut.flag), 1)
            self.assertEqual(ctx.get(dut.top), 0x10006)
            # Popping leaves the flag where the last push put it.
            await self.pop(ctx, dut)
            self.assertEqual(ctx.get(dut.top), 0x10005)
            await self.push(ctx, dut, 0x0007)
            self.assertEqual(ctx.get(dut.flag), 0)

        self.run_scenario(dut, testbench)
