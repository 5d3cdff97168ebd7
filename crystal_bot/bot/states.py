"""FSM состояния бота для простых сценариев."""

from __future__ import annotations

from aiogram.fsm.state import State, StatesGroup


class CouponStates(StatesGroup):
    """Ввод кода купона покупателем в тикете."""

    waiting_for_code: State = State()
