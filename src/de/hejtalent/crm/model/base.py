import uuid
from sqlalchemy import String, Text, Uuid, orm
from sqlalchemy.orm import mapped_column
from ulid import ULID

from typing_extensions import Annotated

str512 = Annotated[str, 512]
longtext = Annotated[str, mapped_column(Text())]
uuidstr = Annotated[str, mapped_column(Uuid(as_uuid=False))]
uuidpk = Annotated[str, mapped_column(Uuid(as_uuid=False), primary_key=True)]


class Base(orm.DeclarativeBase):
    type_annotation_map = {
        str512: String(512),
        longtext: Text(),
        uuidstr: Uuid(as_uuid=False),
        uuidpk: Uuid(as_uuid=False),
    }


def generate_guid() -> str:
    """Time-ordered primary key in UUID form so it fits the CRM's uuid columns."""
    return str(ULID().to_uuid())


def is_uuid(value: str) -> bool:
    """Ids that are not uuids cannot match a row, and binding them to a uuid column fails."""
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True
