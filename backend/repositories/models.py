"""
SQLAlchemy ORM models for the administrative-units dataset.
"""
from sqlalchemy import Column, Float, Integer, String

from db import Base


class AdministrativeUnitORM(Base):
    __tablename__ = "administrative_units"

    id = Column(String, primary_key=True, index=True)
    province_id = Column(Integer, nullable=True, index=True)
    district_id = Column(Integer, nullable=True, index=True)
    ward_id = Column(Integer, nullable=True)
    province_name = Column(String, nullable=False, index=True)
    district_name = Column(String, nullable=True)
    ward_name = Column(String, nullable=True)
    full_name = Column(String, nullable=False)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    type = Column(String, nullable=True)
    slug = Column(String, nullable=True)
    name_with_type = Column(String, nullable=True)
    path = Column(String, nullable=True)
    path_with_type = Column(String, nullable=True)
