"""Challenger Virtual Machine — executes 15-bit word program images.

State:
  memory     32768 raw 16-bit cells, program image loaded from address 0
  registers  r0–r7, addressed by operands 32768–32775
  stack      unbounded LIFO shared by push/pop and call/ret
  ip         address of the next instruction

Addressing:
  value(raw)       raw < 32768 → literal, else contents of register raw % 32768
  write(dest, v)   dest < 32768 → memory[dest], else register dest % 32768
  A register index that reduces to 8 or more raises InvalidRegister.

Termination:
  step() returns True once `halt` executes; every other way out is a
  MachineError subclass carrying the failing ip and raw opcode.
"""
from __future__ import annotations

import logging
import sys
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from challenger.isa import (
    CR,
    MEMORY_SIZE,
    NUM_REGISTERS,
    OPCODES,
    OPCODE_NAMES,
    OPERAND_COUNTS,
    RAW_MASK,
    WORD_MASK,
    WORD_MOD,
    describe_operand,
    is_register,
    register_index,
)

log = logging.getLogger(__name__)

# hook(machine, ip, opcode, operands) — called before each instruction runs
Hook = Callable[["Machine", int, int, Tuple[int, ...]], None]


# ── Errors ─────────────────────────────────────────────────────────────────────

class MachineError(Exception):
    """Fatal condition raised out of step()/run()."""

    def __init__(self, message: str, *, ip: Optional[int] = None,
                 opcode: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.ip      = ip
        self.opcode  = opcode

    def __str__(self) -> str:
        where = []
        if self.ip is not None:
            where.append(f"ip={self.ip}")
        if self.opcode is not None:
            name = OPCODE_NAMES.get(self.opcode, "?")
            where.append(f"opcode={self.opcode} ({name})")
        if not where:
            return self.message
        return f"{self.message} [{' '.join(where)}]"


class UnknownInstruction(MachineError):
    pass


class InvalidRegister(MachineError):
    pass


class StackUnderflow(MachineError):
    pass


class DivisionByZero(MachineError):
    pass


class AddressOutOfRange(MachineError):
    pass


class InputExhausted(MachineError):
    pass


class OutputError(MachineError):
    pass


# ── Machine ────────────────────────────────────────────────────────────────────

class Machine:
    def __init__(self, stdin=None, stdout=None, *, swallow_cr: bool = True,
                 trace: bool = False, hook: Optional[Hook] = None):
        self.stdin      = stdin
        self.stdout     = stdout
        self.swallow_cr = swallow_cr
        self.trace      = trace
        self.hook       = hook

        self.memory:    List[int] = [0] * MEMORY_SIZE
        self.registers: List[int] = [0] * NUM_REGISTERS
        self.stack:     List[int] = []
        self.ip      = 0
        self.halted  = False
        self.steps   = 0
        # UTF-8 bytes still owed from a multi-byte character of a text stdin
        self._pending = bytearray()

        O = OPCODES
        self._handlers: Dict[int, Callable[..., Optional[bool]]] = {
            O["halt"]: self._halt,
            O["set"]:  self._set,
            O["push"]: self._push,
            O["pop"]:  self._pop,
            O["eq"]:   self._eq,
            O["gt"]:   self._gt,
            O["jmp"]:  self._jmp,
            O["jt"]:   self._jt,
            O["jf"]:   self._jf,
            O["add"]:  self._add,
            O["mult"]: self._mult,
            O["mod"]:  self._mod,
            O["and"]:  self._and,
            O["or"]:   self._or,
            O["not"]:  self._not,
            O["rmem"]: self._rmem,
            O["wmem"]: self._wmem,
            O["call"]: self._call,
            O["ret"]:  self._ret,
            O["out"]:  self._out,
            O["in"]:   self._in,
            O["noop"]: self._noop,
        }

    def __repr__(self) -> str:
        state = "halted" if self.halted else "running"
        return (f"<Machine {state} ip={self.ip} steps={self.steps} "
                f"stack={len(self.stack)}>")

    # ── Image loading ─────────────────────────────────────────────────────────

    def load(self, words: Iterable[int]) -> int:
        """Replace memory from address 0 with `words`; returns cells loaded.

        Everything else is reset too, so a loaded machine always starts
        fresh.  Words beyond the address space are ignored.
        """
        memory = [0] * MEMORY_SIZE
        count = 0
        for word in words:
            if count >= MEMORY_SIZE:
                break
            memory[count] = word & RAW_MASK
            count += 1

        self.memory    = memory
        self.registers = [0] * NUM_REGISTERS
        self.stack     = []
        self.ip        = 0
        self.halted    = False
        self.steps     = 0
        self._pending  = bytearray()
        log.debug("loaded %d words", count)
        return count

    def load_bytes(self, data: bytes) -> int:
        from challenger.image import decode_words
        return self.load(decode_words(data))

    # ── Addressing ────────────────────────────────────────────────────────────

    def _register(self, raw: int) -> int:
        idx = register_index(raw)
        if idx >= NUM_REGISTERS:
            raise InvalidRegister(
                f"operand {raw} names register {idx}, only r0-r{NUM_REGISTERS - 1} exist"
            )
        return idx

    def _address(self, addr: int) -> int:
        if not 0 <= addr < MEMORY_SIZE:
            raise AddressOutOfRange(f"memory address {addr} out of range")
        return addr

    def value(self, raw: int) -> int:
        if is_register(raw):
            return self.registers[self._register(raw)]
        return raw

    def write(self, dest: int, val: int) -> None:
        if is_register(dest):
            self.registers[self._register(dest)] = val
        else:
            self.memory[self._address(dest)] = val

    # ── Stack ─────────────────────────────────────────────────────────────────

    def push(self, val: int) -> None:
        self.stack.append(val)

    def pop(self) -> int:
        if not self.stack:
            raise StackUnderflow("pop from empty stack")
        return self.stack.pop()

    # ── Main loop ─────────────────────────────────────────────────────────────

    def run(self) -> int:
        """Step until halt; returns the number of instructions executed."""
        start = self.steps
        while not self.step():
            pass
        return self.steps - start

    def _fetch(self, at: int) -> Tuple[int, Tuple[int, ...]]:
        if not 0 <= at < MEMORY_SIZE:
            raise AddressOutOfRange(f"instruction pointer {at} outside memory")
        opcode = self.memory[at]
        if opcode not in self._handlers:
            raise UnknownInstruction("unknown instruction", opcode=opcode)
        end = at + 1 + OPERAND_COUNTS[opcode]
        if end > MEMORY_SIZE:
            raise AddressOutOfRange("instruction runs past end of memory",
                                    opcode=opcode)
        return opcode, tuple(self.memory[at + 1:end])

    def step(self) -> bool:
        """Execute one instruction.  Returns True once the machine has halted."""
        if self.halted:
            return True

        at = self.ip
        opcode = None
        try:
            opcode, operands = self._fetch(at)
            if self.trace:
                log.debug("ip=%05d  %-4s %s", at, OPCODE_NAMES[opcode],
                          " ".join(describe_operand(r) for r in operands))
            if self.hook is not None:
                self.hook(self, at, opcode, operands)
            self.ip = at + 1 + len(operands)
            done = self._handlers[opcode](*operands)
        except MachineError as exc:
            self.ip = at
            if exc.ip is None:
                exc.ip = at
            if exc.opcode is None:
                exc.opcode = opcode
            log.error("%s: %s", type(exc).__name__, exc)
            raise

        self.steps += 1
        if done:
            self.halted = True
            log.debug("halted at ip=%d after %d steps", at, self.steps)
            return True
        return False

    # ── Handlers ──────────────────────────────────────────────────────────────
    # self.ip already points past the instruction; control transfers overwrite it.

    def _halt(self) -> bool:
        return True

    def _set(self, a: int, b: int) -> None:
        # The destination is always a register, even when encoded as a literal.
        self.registers[self._register(a)] = self.value(b)

    def _push(self, a: int) -> None:
        self.push(self.value(a))

    def _pop(self, a: int) -> None:
        # Validate the destination first so a failing pop keeps its value.
        if is_register(a):
            self._register(a)
        else:
            self._address(a)
        self.write(a, self.pop())

    def _eq(self, a: int, b: int, c: int) -> None:
        self.write(a, 1 if self.value(b) == self.value(c) else 0)

    def _gt(self, a: int, b: int, c: int) -> None:
        self.write(a, 1 if self.value(b) > self.value(c) else 0)

    def _jmp(self, a: int) -> None:
        self.ip = self.value(a)

    def _jt(self, a: int, b: int) -> None:
        if self.value(a) != 0:
            self.ip = self.value(b)

    def _jf(self, a: int, b: int) -> None:
        if self.value(a) == 0:
            self.ip = self.value(b)

    def _add(self, a: int, b: int, c: int) -> None:
        self.write(a, (self.value(b) + self.value(c)) % WORD_MOD)

    def _mult(self, a: int, b: int, c: int) -> None:
        self.write(a, (self.value(b) * self.value(c)) % WORD_MOD)

    def _mod(self, a: int, b: int, c: int) -> None:
        divisor = self.value(c)
        if divisor == 0:
            raise DivisionByZero("mod by zero")
        self.write(a, self.value(b) % divisor)

    def _and(self, a: int, b: int, c: int) -> None:
        self.write(a, self.value(b) & self.value(c))

    def _or(self, a: int, b: int, c: int) -> None:
        self.write(a, self.value(b) | self.value(c))

    def _not(self, a: int, b: int) -> None:
        self.write(a, ~self.value(b) & WORD_MASK)

    def _rmem(self, a: int, b: int) -> None:
        self.write(a, self.memory[self._address(self.value(b))])

    def _wmem(self, a: int, b: int) -> None:
        self.memory[self._address(self.value(a))] = self.value(b)

    def _call(self, a: int) -> None:
        target = self.value(a)
        self.push(self.ip)
        self.ip = target

    def _ret(self) -> None:
        if not self.stack:
            raise StackUnderflow("return with empty call stack")
        self.ip = self.stack.pop()

    def _out(self, a: int) -> None:
        code = self.value(a)
        stream = self.stdout if self.stdout is not None else sys.stdout
        try:
            stream.write(chr(code))
            flush = getattr(stream, "flush", None)
            if flush is not None:
                flush()
        except UnicodeEncodeError as e:
            raise OutputError(f"cannot write code point {code:#06x}: {e.reason}") from e

    def _in(self, a: int) -> None:
        code = self._read_char()
        if code == CR and self.swallow_cr:
            return
        self.write(a, code)

    def _noop(self) -> None:
        pass

    def _read_char(self) -> int:
        """Next input byte.  Text streams are fed through as UTF-8 bytes."""
        if self._pending:
            return self._pending.pop(0)
        stream = self.stdin if self.stdin is not None else sys.stdin.buffer
        data = stream.read(1)
        if not data:
            raise InputExhausted("end of input stream")
        if isinstance(data, str):
            encoded = data.encode("utf-8", errors="replace")
            self._pending.extend(encoded[1:])
            return encoded[0]
        return data[0]
