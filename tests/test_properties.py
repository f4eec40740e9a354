"""
tests.test_properties
=====================
Machine invariants checked over sampled words, plus the observability
side channel (trace logging and per-instruction hook).

Run
---
    pytest tests/test_properties.py -v
"""

from __future__ import annotations

import io
import logging

import pytest

from challenger.isa import MAX_WORD, OPCODES, REG_BASE
from challenger.vm import Machine, InvalidRegister, UnknownInstruction


SAMPLE_WORDS = [0, 1, 2, 255, 256, 12345, 16384, 32766, MAX_WORD]


def R(n: int) -> int:
    return REG_BASE + n


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def machine():
    """A machine wired to in-memory streams; load() a program before use."""
    return Machine(io.BytesIO(), io.StringIO())


def _exec(vm: Machine, words) -> Machine:
    vm.load(words)
    vm.run()
    return vm


# ─────────────────────────────────────────────────────────────────────────────
# Register / arithmetic properties
# ─────────────────────────────────────────────────────────────────────────────

class TestRegisterProperties:
    @pytest.mark.parametrize("reg", range(8))
    def test_set_then_read(self, machine, reg):
        for v in SAMPLE_WORDS:
            _exec(machine, [1, R(reg), v, 0])
            assert machine.value(R(reg)) == v

    @pytest.mark.parametrize("raw", [R(8), R(100), 65535])
    def test_out_of_range_register_rejected(self, machine, raw):
        machine.load([1, raw, 1, 0])
        with pytest.raises(InvalidRegister) as ei:
            machine.run()
        assert ei.value.ip == 0
        assert machine.registers == [0] * 8


class TestArithmeticProperties:
    def test_add_closed_over_words(self, machine):
        for a in SAMPLE_WORDS:
            for b in SAMPLE_WORDS:
                _exec(machine, [9, R(0), a, b, 0])
                assert machine.registers[0] == (a + b) % 32768
                assert machine.registers[0] <= MAX_WORD

    def test_mult_closed_over_words(self, machine):
        for a in SAMPLE_WORDS:
            for b in SAMPLE_WORDS:
                _exec(machine, [10, R(0), a, b, 0])
                assert machine.registers[0] == (a * b) % 32768
                assert machine.registers[0] <= MAX_WORD

    @pytest.mark.parametrize("x", SAMPLE_WORDS)
    def test_not_is_self_inverse(self, machine, x):
        _exec(machine, [14, R(0), x, 14, R(1), R(0), 0])
        assert machine.registers[0] <= MAX_WORD
        assert machine.registers[1] == x


class TestStackProperties:
    @pytest.mark.parametrize("v", SAMPLE_WORDS)
    def test_push_pop_restores_depth(self, machine, v):
        # leave one unrelated value underneath
        machine.load([2, 7, 2, v, 3, R(0), 0])
        machine.step()
        depth = len(machine.stack)
        machine.step()
        machine.step()
        assert machine.registers[0] == v
        assert len(machine.stack) == depth

    def test_call_ret_restores_depth_and_ip(self, machine):
        machine.load([2, 7, 17, 6, 0, 0, 18])
        machine.step()
        depth = len(machine.stack)
        machine.step()
        assert machine.ip == 6
        machine.step()
        assert machine.ip == 4
        assert len(machine.stack) == depth

    def test_call_shares_stack_with_push(self, machine):
        # the callee pops its own return address and jumps there by hand
        machine.load([17, 4, 19, 66, 3, R(0), 6, R(0)])
        machine.step()
        machine.step()
        machine.step()
        assert machine.ip == 2
        assert machine.stack == []


# ─────────────────────────────────────────────────────────────────────────────
# Observability: hook + trace logging
# ─────────────────────────────────────────────────────────────────────────────

class TestObservability:
    def test_hook_sees_every_instruction(self):
        seen = []
        vm = Machine(io.BytesIO(), io.StringIO(),
                     hook=lambda m, ip, op, operands: seen.append((ip, op, operands)))
        _exec(vm, [19, 65, 21, 0])
        assert seen == [
            (0, OPCODES["out"], (65,)),
            (2, OPCODES["noop"], ()),
            (3, OPCODES["halt"], ()),
        ]

    def test_hook_runs_before_instruction(self):
        order = []
        out = io.StringIO()
        vm = Machine(io.BytesIO(), out,
                     hook=lambda m, ip, op, operands: order.append(out.getvalue()))
        _exec(vm, [19, 65, 0])
        assert order == ["", "A"]

    def test_trace_logs_instructions(self, caplog):
        vm = Machine(io.BytesIO(), io.StringIO(), trace=True)
        with caplog.at_level(logging.DEBUG, logger="challenger.vm"):
            _exec(vm, [1, R(2), 9, 0])
        assert "set  r2 9" in caplog.text
        assert "halt" in caplog.text

    def test_no_trace_by_default(self, caplog):
        vm = Machine(io.BytesIO(), io.StringIO())
        with caplog.at_level(logging.DEBUG, logger="challenger.vm"):
            _exec(vm, [1, R(2), 9, 0])
        assert "set  r2" not in caplog.text

    def test_fatal_error_logged(self, caplog):
        vm = Machine(io.BytesIO(), io.StringIO())
        vm.load([255])
        with caplog.at_level(logging.ERROR, logger="challenger.vm"):
            with pytest.raises(UnknownInstruction):
                vm.run()
        assert "UnknownInstruction" in caplog.text
        assert "ip=0" in caplog.text
