import uuid
from datetime import datetime, timezone
from typing import Optional, TypeVar, Generic, ClassVar
from pydantic import BaseModel
from couchbase.exceptions import DocumentNotFoundException
from couchbase.options import ReplaceOptions
from .keyspace import Keyspace, get_keyspace

class BaseCouchbaseEntityData(BaseModel):
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by_user_id: Optional[str] = None

    def stamp_created(self, user_id: Optional[str] = None) -> None:
        now = datetime.now(timezone.utc)
        if self.created_at is None:
            self.created_at = now
        self.updated_at = now
        if user_id:
            self.created_by_user_id = user_id

    def stamp_updated(self) -> None:
        self.updated_at = datetime.now(timezone.utc)

DataT = TypeVar("DataT", bound=BaseCouchbaseEntityData)
T = TypeVar("T", bound="BaseModelCouchbase")

class BaseModelCouchbase(BaseModel, Generic[DataT]):
    """
    A keyed document plus its CAS token.

    Documents are never removed: marketplace history (cancelled and expired
    listings, terminal orders) stays readable, so there is no delete API.
    """
    id: str
    data: DataT
    cas: Optional[int] = None

    _collection_name: ClassVar[str] = ""

    @staticmethod
    def to_document(data: DataT) -> dict:
        """
        Converts the model to a dictionary for database storage,
        ensuring fields marked with exclude=True are included.
        """
        doc = data.model_dump(mode='json')
        for field_name, field_info in type(data).model_fields.items():
            if field_info.exclude:
                value = getattr(data, field_name)
                if value is not None:
                    doc[field_name] = value
        return doc

    @classmethod
    def new_key(cls) -> str:
        return str(uuid.uuid4())

    @classmethod
    def get_keyspace(cls) -> Keyspace:
        if not cls._collection_name:
            raise ValueError(f"_collection_name not set for {cls.__name__}")
        return get_keyspace(cls._collection_name)

    @classmethod
    def from_row(cls: type[T], row: dict) -> Optional[T]:
        data_dict = row.get(cls._collection_name)
        if not data_dict:
            return None
        return cls(id=row["id"], data=data_dict)

    @classmethod
    async def get(cls: type[T], id: str) -> Optional[T]:
        try:
            collection = await cls.get_keyspace().get_collection()
            result = await collection.get(id)
            data = result.content_as[dict]
            return cls(id=id, data=data, cas=result.cas)
        except DocumentNotFoundException:
            return None

    @classmethod
    async def create(cls: type[T], data: DataT, key: Optional[str] = None, user_id: Optional[str] = None) -> T:
        if key is None:
            key = cls.new_key()
        data.stamp_created(user_id)
        result = await cls.get_keyspace().insert(cls.to_document(data), key=key)
        return cls(id=key, data=data, cas=result.cas)

    @classmethod
    async def update(cls: type[T], item: T) -> T:
        """
        Replaces the stored document. When the item carries a CAS token the
        write only succeeds if nobody else wrote in between
        (``CASMismatchException`` otherwise).
        """
        collection = await cls.get_keyspace().get_collection()
        item.data.stamp_updated()
        doc = cls.to_document(item.data)
        if item.cas:
            result = await collection.replace(item.id, doc, ReplaceOptions(cas=item.cas))
        else:
            result = await collection.replace(item.id, doc)
        item.cas = result.cas
        return item

