"""
Read-only repository for the administrative-units dataset.
"""
import re
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from domain.models import AdministrativeRecord
from repositories.models import AdministrativeUnitORM


def _record_from_orm(orm: AdministrativeUnitORM) -> AdministrativeRecord:
    return AdministrativeRecord(
        id=orm.id,
        province_name=orm.province_name,
        full_name=orm.full_name,
        province_id=orm.province_id,
        district_id=orm.district_id,
        ward_id=orm.ward_id,
        district_name=orm.district_name,
        ward_name=orm.ward_name,
        latitude=orm.latitude,
        longitude=orm.longitude,
        type=orm.type,
        slug=orm.slug,
        name_with_type=orm.name_with_type,
        path=orm.path,
        path_with_type=orm.path_with_type,
    )


def _escape_like(value: str) -> str:
    return re.sub(r"([%_\\])", r"\\\1", value)


class AdministrativeUnitsRepository:
    """Name lookups over provinces, districts and wards."""

    def search_by_name(
        self, session: Session, pattern: str, limit: int = 10, slug: Optional[str] = None
    ) -> List[AdministrativeRecord]:
        """Case-insensitive substring match on full, province and district names.

        `slug` optionally also matches the unaccented slug column, so 'ha noi'
        finds 'Hà Nội'.
        """
        pattern = (pattern or "").strip()
        if not pattern:
            return []
        like = f"%{_escape_like(pattern)}%"
        clauses = [
            AdministrativeUnitORM.full_name.ilike(like, escape="\\"),
            AdministrativeUnitORM.province_name.ilike(like, escape="\\"),
            AdministrativeUnitORM.district_name.ilike(like, escape="\\"),
        ]
        if slug:
            clauses.append(AdministrativeUnitORM.slug.ilike(f"%{_escape_like(slug)}%", escape="\\"))
        rows = (
            session.query(AdministrativeUnitORM)
            .filter(or_(*clauses))
            .order_by(AdministrativeUnitORM.province_name, AdministrativeUnitORM.id)
            .limit(limit)
            .all()
        )
        return [_record_from_orm(r) for r in rows]

    def list_provinces(self, session: Session) -> List[AdministrativeRecord]:
        """Province-level rows (no district or ward), ordered by name."""
        rows = (
            session.query(AdministrativeUnitORM)
            .filter(
                AdministrativeUnitORM.district_id.is_(None),
                AdministrativeUnitORM.ward_id.is_(None),
            )
            .order_by(AdministrativeUnitORM.province_name)
            .all()
        )
        return [_record_from_orm(r) for r in rows]

    def list_names(self, session: Session) -> List[str]:
        """Distinct province and district names, alphabetically."""
        provinces = session.query(AdministrativeUnitORM.province_name).distinct().all()
        districts = (
            session.query(AdministrativeUnitORM.district_name)
            .filter(AdministrativeUnitORM.district_name.isnot(None))
            .distinct()
            .all()
        )
        return sorted({name for (name,) in provinces + districts if name})
