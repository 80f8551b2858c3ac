"""
Facet Builder

Rarity population and trait-value histograms for a collection. Independent
of pagination; rarity is an enhancement, so `build` degrades to an empty
result instead of failing the response.
"""

from dataclasses import dataclass, field

from sqlalchemy import func
from sqlmodel import Session, select

from app.core.db_utils import degradable, translate_db_errors
from app.core.logging_config import get_logger
from app.core.typing import col
from app.models.collection import Collection
from app.models.item import Item, ItemAttribute, ItemStatus
from app.models.rarity import RarityRecord

logger = get_logger(__name__)


@dataclass
class TraitValueCount:
    value: str
    count: int


@dataclass
class TraitFacet:
    type: str
    values: list[TraitValueCount] = field(default_factory=list)


@dataclass
class Facets:
    population: int = 0
    traits: list[TraitFacet] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "population": self.population,
            "traits": [
                {"type": t.type, "values": [{"value": v.value, "count": v.count} for v in t.values]}
                for t in self.traits
            ],
        }


class FacetBuilder:
    def __init__(self, session: Session):
        self.session = session

    def population(self, contract: str) -> int:
        """Number of tokens with a computed rank."""
        query = select(func.count(col(RarityRecord.id))).where(
            func.lower(RarityRecord.contract) == contract.lower(),
            col(RarityRecord.rank).is_not(None),
        )
        with translate_db_errors("rarity_population", contract=contract):
            return int(self.session.exec(query).one() or 0)

    def trait_histogram(self, collection_id: int) -> list[TraitFacet]:
        """
        Count (trait_type, value) pairs over the collection's ingested items.

        Ordered by type, then most common value first, then value. Blank
        types and values are skipped.
        """
        count = func.count(col(ItemAttribute.id))
        query = (
            select(ItemAttribute.trait_type, ItemAttribute.value, count.label("count"))
            .join(Item, col(Item.id) == col(ItemAttribute.item_id))
            .where(
                col(Item.collection_id) == collection_id,
                col(Item.status) == ItemStatus.SUCCESS,
                func.trim(ItemAttribute.trait_type) != "",
                func.trim(ItemAttribute.value) != "",
            )
            .group_by(ItemAttribute.trait_type, ItemAttribute.value)
            .order_by(col(ItemAttribute.trait_type), count.desc(), col(ItemAttribute.value))
        )
        with translate_db_errors("trait_histogram", collection_id=collection_id):
            rows = self.session.execute(query).all()

        facets: list[TraitFacet] = []
        for trait_type, value, n in rows:
            if not facets or facets[-1].type != trait_type:
                facets.append(TraitFacet(type=trait_type))
            facets[-1].values.append(TraitValueCount(value=value, count=int(n)))
        return facets

    def build(self, collection: Collection) -> Facets:
        """Population and histogram; any failure yields population=0, traits=[]."""
        with degradable(self.session, "collection_facets", contract=collection.contract) as handler:
            facets = Facets(
                population=self.population(collection.contract),
                traits=self.trait_histogram(collection.id),
            )
        if handler.failed:
            logger.warning("Facets degraded", contract=collection.contract)
            return Facets()
        return facets
