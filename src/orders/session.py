"""Сессия редактирования черновика: защита от устаревших асинхронных результатов."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from pricing.catalog import BUNDLED_CATALOG, Catalog
from pricing.models import PriceBreakdown
from pricing.promotions import PromoRuleSet

from .draft import DraftState, OrderBuilder, OrderDraft

logger = logging.getLogger(__name__)


class DraftSession:
    """Один активный черновик и каталог, по которому он считается.

    Результат загрузки каталога применяется, только если за время ожидания
    сессию не бросили и не запустили более новую загрузку для того же черновика.
    """

    def __init__(self, builder: OrderBuilder, catalog: Catalog = BUNDLED_CATALOG) -> None:
        self.builder = builder
        self.catalog = catalog
        self.abandoned = False
        self._generation = 0

    def _is_current(self, generation: int, draft: OrderDraft) -> bool:
        return not self.abandoned and generation == self._generation and self.builder.draft is draft

    async def refresh_catalog(self, loader: Callable[[], Awaitable[Catalog]]) -> bool:
        """Загрузить каталог; вернуть False, если результат устарел и отброшен."""
        self._generation += 1
        generation = self._generation
        draft = self.builder.draft

        catalog = await loader()

        if not self._is_current(generation, draft):
            logger.debug("Ignoring stale catalog result for draft %s", draft.id)
            return False
        self.catalog = catalog
        return True

    def quote(self, promotions: PromoRuleSet = None) -> PriceBreakdown:
        return self.builder.price(self.catalog, promotions)

    def abandon(self) -> None:
        """Бросить черновик. Повторный вызов безопасен."""
        self.abandoned = True
        if self.builder.state not in (DraftState.PAID, DraftState.DISCARDED):
            self.builder.discard()

    @property
    def draft_id(self) -> Optional[str]:
        return self.builder.draft.id
