"""
Async adapter over the administrative-units repository.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from domain.errors import ProviderUnavailable
from domain.models import Location
from repositories.admin_units import AdministrativeUnitsRepository
from services.location_converters import to_location
from services.region_detector import strip_diacritics

SERVICE = "local-dataset"

logger = logging.getLogger(__name__)


class LocalDatasetAdapter:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        repository: Optional[AdministrativeUnitsRepository] = None,
    ):
        if session_factory is None:
            from db import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory
        self.repository = repository or AdministrativeUnitsRepository()
        self._names: Optional[List[str]] = None

    def is_available(self) -> bool:
        return self.session_factory is not None

    def _search_sync(self, query: str, limit: int) -> List[Location]:
        slug = "-".join(strip_diacritics(query).split())
        try:
            with self.session_factory() as session:
                records = self.repository.search_by_name(session, query, limit, slug=slug)
        except SQLAlchemyError as exc:
            raise ProviderUnavailable(SERVICE, f"Local dataset query failed: {exc}") from exc
        return [to_location(r) for r in records]

    async def search_by_name(self, query: str, limit: int = 10) -> List[Location]:
        if not query or not query.strip():
            return []
        locations = await asyncio.to_thread(self._search_sync, query.strip(), limit)
        logger.debug("Local dataset search %r: %d results", query, len(locations))
        return locations

    async def search(self, query: str, limit: int = 10) -> List[Location]:
        return await self.search_by_name(query, limit)

    def _names_sync(self) -> List[str]:
        try:
            with self.session_factory() as session:
                return self.repository.list_names(session)
        except SQLAlchemyError as exc:
            raise ProviderUnavailable(SERVICE, f"Local dataset query failed: {exc}") from exc

    def _provinces_sync(self) -> List[Location]:
        try:
            with self.session_factory() as session:
                records = self.repository.list_provinces(session)
        except SQLAlchemyError as exc:
            raise ProviderUnavailable(SERVICE, f"Local dataset query failed: {exc}") from exc
        return [to_location(r) for r in records]

    async def list_provinces(self) -> List[Location]:
        return await asyncio.to_thread(self._provinces_sync)

    async def list_names(self) -> List[str]:
        """Province and district names, loaded once per adapter."""
        if self._names is None:
            self._names = await asyncio.to_thread(self._names_sync)
        return self._names
