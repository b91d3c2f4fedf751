# Disable pylint's "your name is too short" warning.
# pylint: disable=C0103
from typing import List, Tuple

from amaranth import Signal, Module, Elaboratable, Cat
from amaranth.build import Platform
from amaranth.hdl import Assert

from consts import STACK_DEPTH, WIDTH, REG_WIDTH, FLAG_BIT
from util import main


class StackCard(Elaboratable):
    """Logic for the stack card, which is register 14.

    Attributes:
        push: Push data_in on the next clock. Together with pop, replaces
            the top level in place instead.
        pop: Pop the top level on the next clock.
        data_in: The value to push or to replace the top with.
        top: The register as read now: the top level and the flag.
        next_top: What top will read as once a pop completes.
        flag: The flag bit of the register.

    The levels shift down on a push (the bottom level falls off) and up on
    a pop (the bottom level fills with zero). The flag is not part of any
    level: only a pure push changes it.
    """

    push: Signal
    pop: Signal
    data_in: Signal
    top: Signal
    next_top: Signal
    flag: Signal

    def __init__(self, depth: int = STACK_DEPTH):
        """Constructs a stack card.

        Args:
            depth: The number of levels.
        """
        assert depth >= 2

        # Controls
        self.push = Signal()
        self.pop = Signal()
        self.data_in = Signal(REG_WIDTH)

        # Outputs
        self.top = Signal(REG_WIDTH)
        self.next_top = Signal(REG_WIDTH)
        self.flag = Signal()

        # Internals
        self.levels = [Signal(WIDTH, name=f"level{i}") for i in range(depth)]

        self.depth = depth

    def ports(self) -> List[Signal]:
        return [self.push, self.pop, self.data_in, self.top, self.next_top,
                self.flag]

    def elaborate(self, _: Platform) -> Module:
        """Implements the logic of the stack card."""
        m = Module()

        levels = self.levels
        value_in = self.data_in[:WIDTH]

        m.d.comb += [
            self.top.eq(Cat(levels[0], self.flag)),
            self.next_top.eq(Cat(levels[1], self.flag)),
        ]

        with m.If(self.push & self.pop):
            m.d.sync += levels[0].eq(value_in)

        with m.Elif(self.push):
            m.d.sync += levels[0].eq(value_in)
            m.d.sync += self.flag.eq(self.data_in[FLAG_BIT])
            for i in range(1, self.depth):
                m.d.sync += levels[i].eq(levels[i - 1])

        with m.Elif(self.pop):
            for i in range(self.depth - 1):
                m.d.sync += levels[i].eq(levels[i + 1])
            m.d.sync += levels[-1].eq(0)

        return m

    @classmethod
    def formal(cls) -> Tuple[Module, List[Signal]]:
        """Formal verification for the stack card."""
        m = Module()
        m.submodules.stack = stack = StackCard()

        past_valid = Signal()
        past_push = Signal()
        past_pop = Signal()
        past_data = Signal(REG_WIDTH)
        past_flag = Signal()
        past_levels = [Signal(WIDTH, name=f"past_level{i}")
                       for i in range(stack.depth)]

        m.d.sync += [
            past_valid.eq(1),
            past_push.eq(stack.push),
            past_pop.eq(stack.pop),
            past_data.eq(stack.data_in),
            past_flag.eq(stack.flag),
        ]
        m.d.sync += [p.eq(l) for p, l in zip(past_levels, stack.levels)]

        levels = stack.levels

        with m.If(past_valid):
            with m.If(past_push & past_pop):
                m.d.comb += Assert(levels[0] == past_data[:WIDTH])
                m.d.comb += Assert(stack.flag == past_flag)
                for i in range(1, stack.depth):
                    m.d.comb += Assert(levels[i] == past_levels[i])

            with m.Elif(past_push):
                m.d.comb += Assert(levels[0] == past_data[:WIDTH])
                m.d.comb += Assert(stack.flag == past_data[FLAG_BIT])
                for i in range(1, stack.depth):
                    m.d.comb += Assert(levels[i] == past_levels[i - 1])

            with m.Elif(past_pop):
                m.d.comb += Assert(stack.flag == past_flag)
                for i in range(stack.depth - 1):
                    m.d.comb += Assert(levels[i] == past_levels[i + 1])
                m.d.comb += Assert(levels[-1] == 0)

            with m.Else():
                m.d.comb += Assert(stack.flag == past_flag)
                for i in range(stack.depth):
                    m.d.comb += Assert(levels[i] == past_levels[i])

        # The post-pop top is always the second level.
        m.d.comb += Assert(stack.next_top[:WIDTH] == levels[1])

        return m, stack.ports()


if __name__ == "__main__":
    main(StackCard)
