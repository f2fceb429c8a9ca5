from .config import (
    USERNAME,
    PASSWORD,
    DEFAULT_BUCKET_NAME,
    HOST,
    PROTOCOL,
    auth,
    config_errors,
    get_cluster,
    check_connection
)
from .keyspace import (
    Keyspace,
    get_keyspace
)
from .base_model import (
    BaseModelCouchbase,
    BaseCouchbaseEntityData,
    DataT,
    T
)

# External re-exports to match original API
from couchbase.exceptions import DocumentNotFoundException, CASMismatchException
