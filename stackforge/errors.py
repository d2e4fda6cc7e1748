"""
Error taxonomy for stack-forge.

Construction errors (MalformedProgram, ConfigurationError) are fatal to the
attempt that raised them. ExecutionFault subclasses are raised inside the VM
and converted into Faulted outcomes before they leave VirtualMachine.execute.
"""

from __future__ import annotations


class StackForgeError(Exception):
    pass


class MalformedProgram(StackForgeError):
    """A program violates the instruction/operand grammar."""


class ConfigurationError(StackForgeError):
    """Invalid GA configuration; raised before any generation runs."""


class OperatorRepairFailure(StackForgeError):
    """A genetic operator could not produce a valid program within its retry budget."""


class ExecutionFault(StackForgeError):
    reason = "FAULT"

    def __init__(self, pc: int, detail: str = "") -> None:
        self.pc = pc
        self.detail = detail
        msg = f"{self.reason} at pc={pc}"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class StackUnderflow(ExecutionFault):
    reason = "STACK_UNDERFLOW"


class DivisionByZero(ExecutionFault):
    reason = "DIVISION_BY_ZERO"


class InvalidJumpTarget(ExecutionFault):
    reason = "INVALID_JUMP_TARGET"
