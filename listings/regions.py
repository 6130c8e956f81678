"""
listings/regions.py -- Region and comuna lookup tables.

Read-mostly reference data used by profile fields, the listing regionId /
comunaId filters, and the client's select widgets. seed_chile() loads Chile's
16 regions with a representative set of comunas each; it is idempotent and
run by `python main.py seed`.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import Column, String, Table, UniqueConstraint, and_

from core.db import Database, metadata, new_id
from listings.models import Comuna, Region

regions = Table(
    "regions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(120), nullable=False, unique=True),
)

comunas = Table(
    "comunas",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("region_id", String(36), nullable=False, index=True),
    Column("name", String(120), nullable=False),
    UniqueConstraint("region_id", "name", name="uq_comuna_region_name"),
)

CHILE: dict[str, list[str]] = {
    "Región de Arica y Parinacota": ["Arica", "Putre", "Camarones", "General Lagos"],
    "Región de Tarapacá": ["Iquique", "Alto Hospicio", "Pozo Almonte", "Pica", "Colchane"],
    "Región de Antofagasta": ["Antofagasta", "Calama", "San Pedro de Atacama", "Mejillones", "Tocopilla"],
    "Región de Atacama": ["Copiapó", "Vallenar", "Caldera", "Chañaral", "Diego de Almagro"],
    "Región de Coquimbo": ["La Serena", "Coquimbo", "Ovalle", "Illapel", "Vicuña", "Salamanca"],
    "Región de Valparaíso": [
        "Valparaíso",
        "Viña del Mar",
        "Quilpué",
        "Villa Alemana",
        "San Antonio",
        "Quillota",
        "Los Andes",
        "San Felipe",
    ],
    "Región Metropolitana de Santiago": [
        "Santiago",
        "Providencia",
        "Las Condes",
        "Ñuñoa",
        "Maipú",
        "Puente Alto",
        "La Florida",
        "Vitacura",
        "Lo Barnechea",
        "Colina",
        "Melipilla",
    ],
    "Región del Libertador General Bernardo O'Higgins": [
        "Rancagua",
        "Rengo",
        "San Fernando",
        "Machalí",
        "Graneros",
        "Pichilemu",
    ],
    "Región del Maule": ["Talca", "Curicó", "Linares", "Constitución", "Cauquenes"],
    "Región de Ñuble": ["Chillán", "San Carlos", "Bulnes", "Yungay", "Chillán Viejo"],
    "Región del Biobío": ["Concepción", "Talcahuano", "Los Ángeles", "Chiguayante", "Coronel", "Penco"],
    "Región de La Araucanía": ["Temuco", "Villarrica", "Pucón", "Angol", "Victoria", "Padre Las Casas"],
    "Región de Los Ríos": ["Valdivia", "La Unión", "Panguipulli", "Río Bueno", "Los Lagos"],
    "Región de Los Lagos": ["Puerto Montt", "Puerto Varas", "Osorno", "Castro", "Ancud", "Frutillar"],
    "Región Aysén del General Carlos Ibáñez del Campo": ["Coyhaique", "Puerto Aysén", "Chile Chico", "Cisnes"],
    "Región de Magallanes y de la Antártica Chilena": ["Punta Arenas", "Puerto Natales", "Porvenir", "Cabo de Hornos"],
}


class RegionStore:
    def __init__(self, db: Database) -> None:
        self.engine = db.engine
        db.create_tables(regions, comunas)

    def list_regions(self) -> list[Region]:
        with self.engine.connect() as conn:
            rows = conn.execute(regions.select().order_by(regions.c.name)).fetchall()
        return [Region(id=r.id, name=r.name) for r in rows]

    def list_comunas(self, region_id: str) -> list[Comuna]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                comunas.select().where(comunas.c.region_id == region_id).order_by(comunas.c.name)
            ).fetchall()
        return [Comuna(id=r.id, region_id=r.region_id, name=r.name) for r in rows]

    def get_region(self, region_id: str) -> Optional[Region]:
        with self.engine.connect() as conn:
            row = conn.execute(regions.select().where(regions.c.id == region_id)).fetchone()
        return Region(id=row.id, name=row.name) if row is not None else None

    def get_comuna(self, comuna_id: str) -> Optional[Comuna]:
        with self.engine.connect() as conn:
            row = conn.execute(comunas.select().where(comunas.c.id == comuna_id)).fetchone()
        return Comuna(id=row.id, region_id=row.region_id, name=row.name) if row is not None else None

    def region_name_for(self, region_id: Optional[str] = None, comuna_id: Optional[str] = None) -> Optional[str]:
        """Resolve the region name a listing filter should match.

        comuna_id wins over region_id. Returns None when neither resolves.
        """
        if comuna_id:
            comuna = self.get_comuna(comuna_id)
            if comuna is not None:
                region = self.get_region(comuna.region_id)
                return region.name if region else None
        if region_id:
            region = self.get_region(region_id)
            return region.name if region else None
        return None

    def seed(self, data: dict[str, list[str]]) -> tuple[int, int]:
        """Insert missing regions and comunas. Returns (regions_added, comunas_added)."""
        added_regions = added_comunas = 0
        with self.engine.connect() as conn:
            for region_name, comuna_names in data.items():
                row = conn.execute(regions.select().where(regions.c.name == region_name)).fetchone()
                if row is None:
                    region_id = new_id()
                    conn.execute(regions.insert().values(id=region_id, name=region_name))
                    added_regions += 1
                else:
                    region_id = row.id
                for comuna_name in comuna_names:
                    exists = conn.execute(
                        comunas.select().where(and_(comunas.c.region_id == region_id, comunas.c.name == comuna_name))
                    ).fetchone()
                    if exists is None:
                        conn.execute(comunas.insert().values(id=new_id(), region_id=region_id, name=comuna_name))
                        added_comunas += 1
            conn.commit()
        return added_regions, added_comunas


def seed_chile(store: RegionStore) -> tuple[int, int]:
    return store.seed(CHILE)
