import asyncio

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db import Base
from domain.models import LocationSource
from repositories import models  # noqa: F401  Registers the ORM tables
from repositories.admin_units import AdministrativeUnitsRepository
from repositories.models import AdministrativeUnitORM
from services.local_dataset import LocalDatasetAdapter

ROWS = [
    dict(id="01", province_id=1, province_name="Hà Nội", full_name="Thành phố Hà Nội",
         latitude=21.0285, longitude=105.8542, type="thanh-pho", slug="ha-noi",
         name_with_type="Thành phố Hà Nội", path_with_type="Thành phố Hà Nội"),
    dict(id="001", province_id=1, district_id=1, province_name="Hà Nội", district_name="Hoàn Kiếm",
         full_name="Quận Hoàn Kiếm, Thành phố Hà Nội", latitude=21.0288, longitude=105.8525,
         type="quan", slug="hoan-kiem", name_with_type="Quận Hoàn Kiếm",
         path_with_type="Quận Hoàn Kiếm, Thành phố Hà Nội"),
    dict(id="48", province_id=48, province_name="Đà Nẵng", full_name="Thành phố Đà Nẵng",
         latitude=16.0544, longitude=108.2022, type="thanh-pho", slug="da-nang",
         name_with_type="Thành phố Đà Nẵng", path_with_type="Thành phố Đà Nẵng"),
]


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    with factory() as session:
        session.add_all([AdministrativeUnitORM(**row) for row in ROWS])
        session.commit()
    yield factory
    engine.dispose()


def test_repository_substring_search(session_factory):
    repo = AdministrativeUnitsRepository()
    with session_factory() as session:
        records = repo.search_by_name(session, "Hoàn Kiếm", limit=10)
        assert [r.id for r in records] == ["001"]
        assert repo.search_by_name(session, "  ", limit=10) == []
        assert repo.search_by_name(session, "100%", limit=10) == []


def test_repository_lists_names(session_factory):
    with session_factory() as session:
        names = AdministrativeUnitsRepository().list_names(session)
    assert names == sorted(["Hoàn Kiếm", "Hà Nội", "Đà Nẵng"])


def test_adapter_search_returns_locations(session_factory):
    adapter = LocalDatasetAdapter(session_factory=session_factory)
    results = asyncio.run(adapter.search("Hà Nội", limit=10))

    assert {r.id for r in results} == {"local_01", "local_001"}
    assert all(r.source == LocationSource.LOCAL_DATASET for r in results)
    assert all(r.importance == 0.8 for r in results)


def test_adapter_matches_unaccented_query_via_slug(session_factory):
    adapter = LocalDatasetAdapter(session_factory=session_factory)
    results = asyncio.run(adapter.search("da nang"))
    assert [r.id for r in results] == ["local_48"]


def test_adapter_respects_limit_and_empty_query(session_factory):
    adapter = LocalDatasetAdapter(session_factory=session_factory)
    assert len(asyncio.run(adapter.search("Hà Nội", limit=1))) == 1
    assert asyncio.run(adapter.search("   ")) == []


def test_repository_lists_province_level_rows_only(session_factory):
    with session_factory() as session:
        records = AdministrativeUnitsRepository().list_provinces(session)
    assert [r.id for r in records] == ["01", "48"]
    assert all(r.district_id is None and r.ward_id is None for r in records)


def test_adapter_lists_provinces_as_locations(session_factory):
    provinces = asyncio.run(LocalDatasetAdapter(session_factory).list_provinces())
    assert [p.province for p in provinces] == ["Hà Nội", "Đà Nẵng"]
    assert provinces[0].name == "Thành phố Hà Nội"
    assert all(p.source == LocationSource.LOCAL_DATASET for p in provinces)
