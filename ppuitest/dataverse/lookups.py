"""
Directory lookups that resolve display names to Dataverse identifiers.

Each lookup is an exact-match OData filter on one entity set. The first record
returned wins; results are not re-sorted.
"""

from typing import Optional

from ..core.exceptions import NotFoundError
from ..core.logging_config import get_logger
from .client import DataverseClient
from .models import DataverseEntityRef, EntityKind


def odata_literal(value: str) -> str:
    """Quote a string for an OData filter, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


class DirectoryLookup:
    """Resolves users, roles, teams and business units by name."""

    def __init__(self, client: DataverseClient):
        self.client = client
        self.logger = get_logger(__name__)

    async def resolve(
        self,
        kind: EntityKind,
        name: str,
        extra_filter: Optional[str] = None,
    ) -> DataverseEntityRef:
        """
        Resolve a name to an entity reference.

        Args:
            kind: Entity kind to search
            name: Exact name (domain name for users)
            extra_filter: Optional OData clause ANDed to the name filter

        Returns:
            Reference to the first matching record

        Raises:
            NotFoundError: If nothing matches
        """
        odata_filter = f"{kind.name_attribute} eq {odata_literal(name)}"
        if extra_filter:
            odata_filter += f" and {extra_filter}"

        params = {
            "$select": f"{kind.id_attribute},{kind.name_attribute}",
            "$filter": odata_filter,
        }
        payload = await self.client.call("GET", kind.entity_set, params=params)
        records = payload.get("value") or []

        if not records:
            raise NotFoundError(kind.value, name)

        if len(records) > 1:
            self.logger.debug(
                f"{len(records)} {kind.value} records match '{name}', using the first"
            )

        ref = DataverseEntityRef(kind=kind, id=records[0][kind.id_attribute], name=name)
        self.logger.info(f"Resolved {ref}")
        return ref

    async def resolve_user(self, username: str) -> DataverseEntityRef:
        return await self.resolve(EntityKind.USER, username)

    async def resolve_role(
        self, role_name: str, business_unit_id: Optional[str] = None
    ) -> DataverseEntityRef:
        """Resolve a role, optionally scoped to one business unit's copy."""
        extra = f"_businessunitid_value eq {business_unit_id}" if business_unit_id else None
        return await self.resolve(EntityKind.ROLE, role_name, extra)

    async def resolve_team(self, team_name: str) -> DataverseEntityRef:
        return await self.resolve(EntityKind.TEAM, team_name)

    async def resolve_business_unit(self, name: str) -> DataverseEntityRef:
        return await self.resolve(EntityKind.BUSINESS_UNIT, name)
