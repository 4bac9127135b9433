"""Deleting an owner removes its entity-specific values; generic values stay behind as orphans."""

from sqlalchemy import delete, func, select

from apps.eav.models import Role
from apps.eav.services.owners import OwnerKind
from apps.eav.services.value_store import EntityValueStore, GenericValueStore
from tests.conftest import make_owner


def _count(session, table, owner_column, owner) -> int:
    return session.scalar(select(func.count()).select_from(table).where(table.c[owner_column] == owner.id))


def test_owner_delete_cascades_to_entity_rows_only(session, role_schema) -> None:
    generic = GenericValueStore(session)
    entity = EntityValueStore(session)
    doomed = make_owner(session, OwnerKind.ROLE, "temp")
    survivor = make_owner(session, OwnerKind.ROLE, "admin")
    for store in (generic, entity):
        store.bulk_upsert(doomed, {"code": "TMP", "can_manage_courses": False})
        store.bulk_upsert(survivor, {"code": "ADM"})
    session.flush()

    session.execute(delete(Role).where(Role.id == doomed.id))

    entity_table = entity.table_for(OwnerKind.ROLE)
    generic_table = generic.table_for(OwnerKind.ROLE)
    assert _count(session, entity_table, "owner_id", doomed) == 0
    assert _count(session, entity_table, "owner_id", survivor) == 1
    assert _count(session, generic_table, "owner_id", doomed) == 2
    assert generic.get(doomed, flatten=True) == {"can_manage_courses": False, "code": "TMP"}
