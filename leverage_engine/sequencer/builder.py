"""Ordered step assembly with flash-loan index binding."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import IntEnum

from ..errors import LeverageLogicError
from ..models import Step, StepKind


class Section(IntEnum):
    BUDGET = 0
    SETUP = 1
    FLASH_BORROW = 2
    LENDING = 3
    SWAP = 4
    FLASH_REPAY = 5
    CLEANUP = 6


_DEFAULT_ORDER = tuple(Section)
_SWAP_FIRST_ORDER = (
    Section.BUDGET,
    Section.SETUP,
    Section.FLASH_BORROW,
    Section.SWAP,
    Section.LENDING,
    Section.FLASH_REPAY,
    Section.CLEANUP,
)


@dataclass(frozen=True)
class FlashTicket:
    """Handle for an appended flash-borrow; redeemed by ``flash_repay``."""

    reserve: str
    borrow_index: int
    borrow_lamports: int
    fee_lamports: int

    @property
    def repay_lamports(self) -> int:
        return self.borrow_lamports + self.fee_lamports


class StepSequence:
    """Append-only step list that enforces section order.

    The flash-borrow index is the running step count at the moment the borrow
    is appended, so any number of budget or setup steps ahead of it is
    accounted for automatically.
    """

    def __init__(self, swap_before_lending: bool = False) -> None:
        order = _SWAP_FIRST_ORDER if swap_before_lending else _DEFAULT_ORDER
        self._rank = {section: i for i, section in enumerate(order)}
        self._current = 0
        self._steps: list[Step] = []
        self._open: dict[int, FlashTicket] = {}
        self._tickets: list[FlashTicket] = []

    def __len__(self) -> int:
        return len(self._steps)

    def add(self, section: Section, *steps: Step) -> None:
        rank = self._rank[section]
        if rank < self._current:
            raise LeverageLogicError(
                f"Cannot add {section.name} steps after later sections were started"
            )
        if section is Section.FLASH_BORROW or section is Section.FLASH_REPAY:
            flash_kind = (
                StepKind.FLASH_BORROW
                if section is Section.FLASH_BORROW
                else StepKind.FLASH_REPAY
            )
            if any(step.kind is flash_kind for step in steps):
                raise LeverageLogicError(
                    f"Use flash_borrow/flash_repay for {flash_kind.value} steps"
                )
        self._current = rank
        self._steps.extend(steps)

    def flash_borrow(
        self, step: Step, reserve: str, borrow_lamports: int, fee_lamports: int
    ) -> FlashTicket:
        if step.kind is not StepKind.FLASH_BORROW:
            raise LeverageLogicError(f"Expected a flash-borrow step, got {step.kind.value}")
        rank = self._rank[Section.FLASH_BORROW]
        if rank < self._current:
            raise LeverageLogicError("Flash borrow added after later sections")
        ticket = FlashTicket(
            reserve=reserve,
            borrow_index=len(self._steps),
            borrow_lamports=borrow_lamports,
            fee_lamports=fee_lamports,
        )
        self._current = rank
        self._steps.append(step)
        self._open[ticket.borrow_index] = ticket
        self._tickets.append(ticket)
        return ticket

    def flash_repay(self, ticket: FlashTicket, step: Step) -> None:
        if step.kind is not StepKind.FLASH_REPAY:
            raise LeverageLogicError(f"Expected a flash-repay step, got {step.kind.value}")
        if self._open.pop(ticket.borrow_index, None) is None:
            raise LeverageLogicError(
                f"No open flash borrow at index {ticket.borrow_index}"
            )
        rank = self._rank[Section.FLASH_REPAY]
        if rank < self._current:
            raise LeverageLogicError("Flash repay added after cleanup")
        self._current = rank
        self._steps.append(
            replace(
                step,
                data={
                    **step.data,
                    "borrow_index": ticket.borrow_index,
                    "lamports": ticket.repay_lamports,
                },
            )
        )

    @property
    def tickets(self) -> tuple[FlashTicket, ...]:
        return tuple(self._tickets)

    def build(self) -> tuple[Step, ...]:
        if self._open:
            raise LeverageLogicError(
                f"Flash borrows never repaid at indices {sorted(self._open)}"
            )
        return tuple(self._steps)

    def touched_accounts(self) -> list[str]:
        """Every program id and account in step order, first occurrence wins."""
        return dedupe(
            item
            for step in self._steps
            for item in (step.program, *step.accounts)
            if item
        )


def dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def strip_budget_steps(steps: Iterable[Step]) -> list[Step]:
    """Drop compute-budget steps; a bundle carries a single budget section."""
    return [step for step in steps if step.kind is not StepKind.COMPUTE_BUDGET]
