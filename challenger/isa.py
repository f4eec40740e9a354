"""Challenger ISA — opcode table, word layout and operand encoding.

Groups:
  Control     (0, 6–8, 17, 18, 21)  halt, jumps, call/ret, noop
  Data        (1–3, 15, 16)         set, stack, memory access
  Compare     (4, 5)                eq, gt
  Arithmetic  (9–14)                add, mult, mod, and, or, not
  I/O         (19, 20)              out, in
"""

# ── Word layout ────────────────────────────────────────────────────────────────
# Values are 15-bit unsigned.  Raw cells in memory are 16 bits wide so that an
# operand can name a register: 32768..32775 → r0..r7.

WORD_BITS   = 15
WORD_MOD    = 1 << WORD_BITS      # 32768
WORD_MASK   = WORD_MOD - 1        # 0x7FFF
MAX_WORD    = WORD_MASK
RAW_MASK    = 0xFFFF

MEMORY_SIZE   = WORD_MOD
NUM_REGISTERS = 8
REG_BASE      = WORD_MOD
REG_LAST      = REG_BASE + NUM_REGISTERS - 1

CR = 13   # carriage return, see Machine(swallow_cr=...)

# ── Opcodes ────────────────────────────────────────────────────────────────────
OPCODES: dict[str, int] = {
    "halt":  0,
    "set":   1,
    "push":  2,
    "pop":   3,
    "eq":    4,
    "gt":    5,
    "jmp":   6,
    "jt":    7,
    "jf":    8,
    "add":   9,
    "mult": 10,
    "mod":  11,
    "and":  12,
    "or":   13,
    "not":  14,
    "rmem": 15,
    "wmem": 16,
    "call": 17,
    "ret":  18,
    "out":  19,
    "in":   20,
    "noop": 21,
}

# Reverse lookup: opcode int → mnemonic string
OPCODE_NAMES: dict[int, str] = {v: k for k, v in OPCODES.items()}

# Operands following each opcode in memory
OPERAND_COUNTS: dict[int, int] = {
    OPCODES["halt"]: 0,
    OPCODES["set"]:  2,
    OPCODES["push"]: 1,
    OPCODES["pop"]:  1,
    OPCODES["eq"]:   3,
    OPCODES["gt"]:   3,
    OPCODES["jmp"]:  1,
    OPCODES["jt"]:   2,
    OPCODES["jf"]:   2,
    OPCODES["add"]:  3,
    OPCODES["mult"]: 3,
    OPCODES["mod"]:  3,
    OPCODES["and"]:  3,
    OPCODES["or"]:   3,
    OPCODES["not"]:  2,
    OPCODES["rmem"]: 2,
    OPCODES["wmem"]: 2,
    OPCODES["call"]: 1,
    OPCODES["ret"]:  0,
    OPCODES["out"]:  1,
    OPCODES["in"]:   1,
    OPCODES["noop"]: 0,
}


def instruction_width(opcode: int) -> int:
    """Cells occupied by one instruction: the opcode plus its operands."""
    return 1 + OPERAND_COUNTS[opcode]


# ── Operand encoding ───────────────────────────────────────────────────────────

def is_register(raw: int) -> bool:
    return raw >= REG_BASE


def register_index(raw: int) -> int:
    # Not bounds-checked: 32776 and up reduce to indices ≥ 8.
    return raw % WORD_MOD


def describe_operand(raw: int) -> str:
    if is_register(raw):
        return f"r{register_index(raw)}"
    return str(raw)
