from .admin_units import AdministrativeUnitsRepository
from . import models

__all__ = ["AdministrativeUnitsRepository", "models"]
